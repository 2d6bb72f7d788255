"""
Clinical URLs - Patients, surgeries, lab data, follow-ups (read-only).
"""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import FollowUpViewSet, LabDataViewSet, PatientViewSet, SurgeryViewSet

router = DefaultRouter()
router.register(r'patients', PatientViewSet, basename='patient')
router.register(r'surgeries', SurgeryViewSet, basename='surgery')
router.register(r'lab-data', LabDataViewSet, basename='lab-data')
router.register(r'follow-ups', FollowUpViewSet, basename='follow-up')

urlpatterns = [
    path('', include(router.urls)),
]
