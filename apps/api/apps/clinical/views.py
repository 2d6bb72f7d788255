"""
Clinical read-only viewsets.

Endpoints:
- GET /api/v1/clinical/patients/
- GET /api/v1/clinical/surgeries/?patient_id=...
- GET /api/v1/clinical/lab-data/?patient_id=...
- GET /api/v1/clinical/follow-ups/?patient_id=...&surgery=...
"""
import uuid

from rest_framework import viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated

from apps.clinical.models import FollowUp, LabData, Patient, Surgery
from apps.clinical.serializers import (
    FollowUpSerializer,
    LabDataSerializer,
    PatientSerializer,
    SurgerySerializer,
)


class PatientViewSet(viewsets.ReadOnlyModelViewSet):
    """Patients, searchable by patient ID with ?q=."""
    serializer_class = PatientSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = Patient.objects.all()
        q = self.request.query_params.get('q')
        if q:
            queryset = queryset.filter(patient_id__icontains=q.strip())
        return queryset


class _PatientScopedMixin:
    """Filter by the practice patient ID given as ?patient_id=."""
    patient_lookup = 'patient__patient_id'

    def filter_patient(self, queryset):
        patient_id = self.request.query_params.get('patient_id')
        if patient_id:
            queryset = queryset.filter(**{self.patient_lookup: patient_id})
        return queryset


class SurgeryViewSet(_PatientScopedMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = SurgerySerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = Surgery.objects.select_related('patient')
        category = self.request.query_params.get('category')
        if category:
            queryset = queryset.filter(surgery_category=category)
        return self.filter_patient(queryset)


class LabDataViewSet(_PatientScopedMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = LabDataSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return self.filter_patient(LabData.objects.select_related('patient'))


class FollowUpViewSet(_PatientScopedMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = FollowUpSerializer
    permission_classes = [IsAuthenticated]
    patient_lookup = 'surgery__patient__patient_id'

    def get_queryset(self):
        queryset = FollowUp.objects.select_related('surgery', 'surgery__patient')
        surgery_id = self.request.query_params.get('surgery')
        if surgery_id:
            try:
                surgery_id = uuid.UUID(surgery_id)
            except ValueError:
                raise ValidationError({'surgery': ['Not a valid surgery ID']})
            queryset = queryset.filter(surgery_id=surgery_id)
        return self.filter_patient(queryset)
