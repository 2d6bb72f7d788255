"""
Import URLs.
"""
from django.urls import path

from .views import LabReportImportView, WorkbookImportView

app_name = 'imports'

urlpatterns = [
    path('workbook/', WorkbookImportView.as_view(), name='workbook-import'),
    path('lab-report/', LabReportImportView.as_view(), name='lab-report-import'),
]
