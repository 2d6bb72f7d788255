"""
Import API endpoints.

- POST /api/v1/imports/workbook/   (multipart: file, dry_run)
- POST /api/v1/imports/lab-report/ (patient_id, test_date, text, surgery_date, dry_run)

Fatal errors map to HTTP status codes:
- DocumentError -> 400
- CommitError -> 409
Row-level problems never fail the request; they are listed in
`diagnostics`.
"""
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.observability import get_sanitized_logger
from apps.imports.exceptions import CommitError, DocumentError
from apps.imports.serializers import (
    ImportResultSerializer,
    LabReportImportRequestSerializer,
    WorkbookImportRequestSerializer,
)
from apps.imports.services import run_document_import, run_lab_report_import

logger = get_sanitized_logger(__name__)


def _error_response(exc):
    if isinstance(exc, DocumentError):
        return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    return Response({'detail': str(exc)}, status=status.HTTP_409_CONFLICT)


class WorkbookImportView(APIView):
    """Import a workbook or CSV file into the clinical records."""
    permission_classes = [IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]

    @extend_schema(request=WorkbookImportRequestSerializer, responses=ImportResultSerializer)
    def post(self, request):
        serializer = WorkbookImportRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        upload = serializer.validated_data['file']
        try:
            result = run_document_import(
                upload,
                name=upload.name,
                dry_run=serializer.validated_data['dry_run'],
            )
        except (DocumentError, CommitError) as exc:
            logger.warning(
                'Workbook import rejected',
                extra={'error_type': type(exc).__name__, 'document_name': upload.name}
            )
            return _error_response(exc)

        return Response(ImportResultSerializer(result).data, status=status.HTTP_200_OK)


class LabReportImportView(APIView):
    """Import one pasted laboratory report for a patient."""
    permission_classes = [IsAuthenticated]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    @extend_schema(request=LabReportImportRequestSerializer, responses=ImportResultSerializer)
    def post(self, request):
        serializer = LabReportImportRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            result = run_lab_report_import(
                data['patient_id'],
                data['text'],
                data['test_date'],
                surgery_date=data.get('surgery_date'),
                dry_run=data['dry_run'],
            )
        except CommitError as exc:
            logger.warning('Lab report import rejected', extra={'error_type': type(exc).__name__})
            return _error_response(exc)

        return Response(ImportResultSerializer(result).data, status=status.HTTP_200_OK)
