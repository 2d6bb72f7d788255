"""
Import service layer - orchestration of import runs.

An import run:
1. Reads the document (DocumentError aborts before anything is staged)
2. Classifies sheets and imports them in dependency order:
   Patient -> Surgery -> LabData -> FollowUp
3. Commits the store once (CommitError aborts; nothing is persisted)
4. Returns per-kind counts plus every non-fatal diagnostic

Only one run executes at a time per process. Each run is tagged with an
import run ID that appears on every log line emitted during the run.
"""
import os
import threading
import time
from typing import Optional

from apps.core.observability import get_sanitized_logger, metrics
from apps.core.observability.correlation import import_run_context
from apps.core.observability.events import (
    log_import_completed,
    log_import_failed,
    log_import_started,
)
from apps.imports.classifier import plan_import
from apps.imports.documents import DELIMITED_EXTENSIONS, TabularDocument, read_document
from apps.imports.exceptions import CommitError, DocumentError
from apps.imports.fields import FieldMapper
from apps.imports.importers import get_importer
from apps.imports.lab_report import import_lab_report
from apps.imports.results import Diagnostic, DiagnosticKind, ImportResult
from apps.imports.store import DjangoRecordStore, RecordStore

logger = get_sanitized_logger(__name__)

SOURCE_WORKBOOK = 'workbook'
SOURCE_CSV = 'csv'
SOURCE_LAB_REPORT = 'lab_report'

_import_lock = threading.Lock()


def import_document(
    document: TabularDocument,
    store: RecordStore,
    mapper: Optional[FieldMapper] = None,
) -> ImportResult:
    """
    Stage every recognized sheet of `document` into `store`.

    Does not commit. Sheets are processed in dependency order regardless of
    their order in the document, so records always find their owners when
    the owners are in the same document.
    """
    plan, unrecognized = plan_import(document)
    result = ImportResult(unrecognized_sheets=unrecognized)

    for sheet_name in unrecognized:
        result.diagnostics.append(Diagnostic(
            kind=DiagnosticKind.SHEET_UNRECOGNIZED,
            message=f"sheet '{sheet_name}' is not a patient, surgery, lab data or follow-up sheet",
            sheet=sheet_name,
        ))
        metrics.import_diagnostics_total.labels(kind=DiagnosticKind.SHEET_UNRECOGNIZED.value).inc()
        logger.warning('Sheet not recognized', extra={'sheet': sheet_name})

    importers = {}
    for kind, sheet in plan:
        if kind not in importers:
            importers[kind] = get_importer(kind, store, mapper=mapper)
        importers[kind].import_sheet(sheet, result, epoch=document.epoch)

    return result


def _source_for(name: str) -> str:
    extension = os.path.splitext(name or '')[1].lower()
    return SOURCE_CSV if extension in DELIMITED_EXTENSIONS else SOURCE_WORKBOOK


def _finish(store: RecordStore, dry_run: bool):
    if dry_run:
        store.discard()
    else:
        store.commit()


def _run(source, document_name, dry_run, stage):
    """
    Common run wrapper: lock, correlation, commit, metrics and events.

    `stage()` stages and commits records and returns the ImportResult.
    """
    with _import_lock, import_run_context() as run_id:
        start_time = time.time()
        log_import_started(run_id, source, document_name)
        try:
            with metrics.import_run_duration_seconds.time():
                result = stage()
            result.dry_run = dry_run
        except (DocumentError, CommitError) as exc:
            outcome = 'document_error' if isinstance(exc, DocumentError) else 'commit_error'
            metrics.import_runs_total.labels(source=source, result=outcome).inc()
            log_import_failed(run_id, source, type(exc).__name__, str(exc))
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        metrics.import_runs_total.labels(source=source, result='success').inc()
        log_import_completed(
            run_id,
            source,
            {kind.value: count for kind, count in result.counts.items()},
            len(result.diagnostics),
            dry_run=dry_run,
            duration_ms=duration_ms,
        )
        return result


def run_document_import(
    source,
    name: Optional[str] = None,
    store: Optional[RecordStore] = None,
    dry_run: bool = False,
    mapper: Optional[FieldMapper] = None,
) -> ImportResult:
    """
    Import a workbook or CSV file from a path or file object.

    Args:
        source: Filesystem path or binary file object
        name: File name, when `source` does not carry one (uploads)
        store: Record store (default: DjangoRecordStore)
        dry_run: Run the whole pipeline but persist nothing
        mapper: FieldMapper override

    Returns:
        ImportResult with per-kind counts and diagnostics

    Raises:
        DocumentError: The document cannot be read
        CommitError: The store failed to commit; nothing was persisted
    """
    document_name = name or os.path.basename(str(getattr(source, 'name', source)))
    store = store if store is not None else DjangoRecordStore()

    def stage():
        document = read_document(source, name=document_name)
        result = import_document(document, store, mapper=mapper)
        _finish(store, dry_run)
        return result

    return _run(_source_for(document_name), document_name, dry_run, stage)


def run_lab_report_import(
    patient_key: str,
    text: str,
    test_date,
    surgery_date=None,
    store: Optional[RecordStore] = None,
    dry_run: bool = False,
    mapper: Optional[FieldMapper] = None,
) -> ImportResult:
    """
    Import one pasted lab report for a patient.

    Raises:
        CommitError: The store failed to commit; nothing was persisted
    """
    store = store if store is not None else DjangoRecordStore()

    def stage():
        result = import_lab_report(
            store,
            patient_key,
            text,
            test_date,
            surgery_date=surgery_date,
            mapper=mapper,
        )
        for diagnostic in result.diagnostics:
            metrics.import_diagnostics_total.labels(kind=diagnostic.kind.value).inc()
        _finish(store, dry_run)
        return result

    return _run(SOURCE_LAB_REPORT, f"lab report {patient_key}", dry_run, stage)
