"""
Import API serializers.
"""
import os

from django.conf import settings
from rest_framework import serializers

from apps.imports.results import DiagnosticKind, RecordKind


class WorkbookImportRequestSerializer(serializers.Serializer):
    """Multipart upload of a workbook (.xlsx) or CSV file."""
    file = serializers.FileField()
    dry_run = serializers.BooleanField(required=False, default=False)

    def validate_file(self, value):
        options = settings.CASEFILE_IMPORT
        extension = os.path.splitext(value.name)[1].lower()
        allowed = [ext.lower() for ext in options['ALLOWED_EXTENSIONS']]
        if extension not in allowed:
            raise serializers.ValidationError(
                f"Invalid file type. Allowed: {', '.join(allowed)}"
            )
        if value.size > options['MAX_UPLOAD_BYTES']:
            raise serializers.ValidationError(
                f"File size exceeds maximum of {options['MAX_UPLOAD_BYTES'] // (1024 * 1024)}MB"
            )
        return value


class LabReportImportRequestSerializer(serializers.Serializer):
    patient_id = serializers.CharField(max_length=64)
    test_date = serializers.DateField()
    surgery_date = serializers.DateField(required=False, allow_null=True)
    text = serializers.CharField(trim_whitespace=False)
    dry_run = serializers.BooleanField(required=False, default=False)

    def validate_patient_id(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('patient_id must not be blank')
        return value


class DiagnosticSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=[kind.value for kind in DiagnosticKind])
    sheet = serializers.CharField(allow_null=True)
    row = serializers.IntegerField(allow_null=True)
    key = serializers.CharField(allow_null=True)
    message = serializers.CharField()


class ImportResultSerializer(serializers.Serializer):
    """
    Serialized ImportResult.

    `counts` always lists every record kind, zero when nothing was imported.
    """
    counts = serializers.SerializerMethodField()
    diagnostics = serializers.SerializerMethodField()
    unrecognized_sheets = serializers.ListField(child=serializers.CharField())
    dry_run = serializers.BooleanField()

    def get_counts(self, result):
        return {kind.value: result.count_for(kind) for kind in RecordKind}

    def get_diagnostics(self, result):
        return DiagnosticSerializer([d.to_dict() for d in result.diagnostics], many=True).data
