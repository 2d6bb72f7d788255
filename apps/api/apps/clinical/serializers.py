"""
Clinical serializers for Patient, Surgery, LabData and FollowUp.

Read-only: records are created through the import pipeline. Derived
metrics (BMI, timing, retention rate) are computed on read.
"""
from rest_framework import serializers

from apps.clinical.calculations import classify_retention_rate, estimate_timing
from apps.clinical.models import FollowUp, LabData, Patient, Surgery


class PatientSerializer(serializers.ModelSerializer):
    """Patient with surgery and lab panel counts"""
    surgeries_count = serializers.IntegerField(source='surgeries.count', read_only=True)
    lab_data_count = serializers.IntegerField(source='lab_data.count', read_only=True)

    class Meta:
        model = Patient
        fields = [
            'id',
            'patient_id',
            'name',
            'age',
            'gender',
            'contact_info',
            'notes',
            'registered_date',
            'surgeries_count',
            'lab_data_count',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class SurgerySerializer(serializers.ModelSerializer):
    """
    Surgery with derived BMI.

    `bmi` is computed from height and weight; the legacy `reported_bmi` is
    only used when one of them is missing.
    """
    patient_id = serializers.CharField(source='patient.patient_id', read_only=True)
    surgery_category_display = serializers.CharField(
        source='get_surgery_category_display',
        read_only=True
    )
    bmi = serializers.SerializerMethodField()
    is_fat_graft = serializers.BooleanField(read_only=True)

    class Meta:
        model = Surgery
        exclude = ['patient']
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_bmi(self, obj):
        bmi = obj.bmi
        return round(bmi, 1) if bmi is not None else None


class LabDataSerializer(serializers.ModelSerializer):
    patient_id = serializers.CharField(source='patient.patient_id', read_only=True)

    class Meta:
        model = LabData
        exclude = ['patient']
        read_only_fields = ['id', 'created_at']


class FollowUpSerializer(serializers.ModelSerializer):
    """
    Follow-up with elapsed days, timing label and per-side retention.

    Retention rates are reported only for fat-graft surgeries, each side
    separately, with its display band.
    """
    patient_id = serializers.CharField(source='surgery.patient.patient_id', read_only=True)
    surgery_date = serializers.DateField(source='surgery.surgery_date', read_only=True)
    days_after_surgery = serializers.IntegerField(read_only=True)
    timing_label = serializers.SerializerMethodField()
    retention = serializers.SerializerMethodField()

    class Meta:
        model = FollowUp
        fields = [
            'id',
            'surgery',
            'patient_id',
            'surgery_date',
            'follow_up_date',
            'measurement_date',
            'timing',
            'timing_label',
            'days_after_surgery',
            'post_op_vectra_right',
            'post_op_vectra_left',
            'body_weight_kg',
            'breast_q_score',
            'smoking_status',
            'alcohol_consumption',
            'o2_capsule',
            'notes',
            'retention',
            'created_at',
        ]
        read_only_fields = fields

    def get_timing_label(self, obj):
        """Stored timing, else the label for the elapsed days."""
        if obj.timing:
            return obj.timing
        days = obj.days_after_surgery
        return estimate_timing(days) if days is not None else None

    def get_retention(self, obj):
        if not obj.surgery.is_fat_graft:
            return None
        return {
            'right': self._side(obj.retention_rate_right),
            'left': self._side(obj.retention_rate_left),
        }

    @staticmethod
    def _side(rate):
        if rate is None:
            return None
        band = classify_retention_rate(rate)
        return {
            'rate': round(rate, 1),
            'band': band.value,
            'label': band.label,
        }
