"""
Quick import of a pasted laboratory report.

The laboratory's report is copied as text, one `label<TAB>value` item per
line. An indented label is a sub-item of the last non-indented label and is
mapped as "<parent> <sub-item>":

    HBs抗原/CLIA\t
      判定\t陰性         -> "HBs抗原/CLIA 判定"
      定量値\t0.00       -> "HBs抗原/CLIA 定量値"
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, List, Optional

from django.core.exceptions import ValidationError

from apps.clinical.models import LabData
from apps.core.observability import get_sanitized_logger
from apps.imports.exceptions import AmbiguousSurgeryError
from apps.imports.fields import FieldMapper, ValueKind, default_mapper, get_field_registry
from apps.imports.normalizers import (
    EXPORT_ARTIFACT,
    clean_string,
    is_lab_value_unreported,
    parse_lab_value,
)
from apps.imports.results import Diagnostic, DiagnosticKind, ImportResult, RecordKind

logger = get_sanitized_logger(__name__)

LAB_REPORT_SOURCE = 'lab report'

_INDENT_CHARS = (' ', '\t', '　')


@dataclass(frozen=True)
class LabReportItem:
    label: str
    field: str
    kind: ValueKind
    value: Any
    line_number: int
    line: str


@dataclass(frozen=True)
class UnmatchedLine:
    line_number: int
    line: str
    reason: str
    kind: DiagnosticKind = DiagnosticKind.FIELD_UNMAPPED


@dataclass
class ParsedLabReport:
    items: List[LabReportItem] = field(default_factory=list)
    unmatched: List[UnmatchedLine] = field(default_factory=list)

    @property
    def unmatched_lines(self):
        return [entry.line for entry in self.unmatched]

    @property
    def parsed_count(self):
        return len(self.items)


def parse_lab_report(text: str, mapper: Optional[FieldMapper] = None) -> ParsedLabReport:
    """
    Parse pasted report text into typed items and unmatched lines.

    Lines with an empty value are ignored. Lines whose label has no lab
    field, or whose numeric value does not parse, are returned as
    unmatched. A numeric value of "0" means "not reported" and is dropped.
    """
    mapper = mapper or default_mapper
    report = ParsedLabReport()
    parent = None

    for line_number, line in enumerate((text or '').splitlines(), start=1):
        if not line.strip():
            continue

        is_sub_item = line.startswith(_INDENT_CHARS)
        columns = [column.strip() for column in line.lstrip(''.join(_INDENT_CHARS)).split('\t')]
        if len(columns) < 2:
            report.unmatched.append(UnmatchedLine(line_number, line, 'no value column'))
            continue

        label, raw_value = columns[0], columns[1]
        if not is_sub_item:
            parent = label
        if is_sub_item and parent:
            full_label = f"{parent} {label}"
        else:
            full_label = label

        if not raw_value or raw_value == EXPORT_ARTIFACT:
            continue

        mapping = mapper.map_field(full_label, is_lab_paste=True)
        if mapping is None:
            report.unmatched.append(
                UnmatchedLine(line_number, line, f"no lab field for '{full_label}'")
            )
            continue

        if mapping.kind == ValueKind.STRING:
            value = clean_string(raw_value)
            if value is None:
                continue
        else:
            value = parse_lab_value(raw_value)
            if value is None:
                if is_lab_value_unreported(raw_value):
                    continue
                report.unmatched.append(UnmatchedLine(
                    line_number,
                    line,
                    f"cannot read '{raw_value}' as a number",
                    kind=DiagnosticKind.VALUE_UNPARSABLE,
                ))
                continue

        report.items.append(LabReportItem(
            label=full_label,
            field=mapping.field,
            kind=mapping.kind,
            value=value,
            line_number=line_number,
            line=line,
        ))

    return report


def import_lab_report(
    store,
    patient_key: str,
    text: str,
    test_date: date,
    surgery_date: Optional[date] = None,
    mapper: Optional[FieldMapper] = None,
) -> ImportResult:
    """
    Stage one LabData panel for `patient_key` from pasted report text.

    The panel is linked to the patient's surgery on `surgery_date` when one
    is given. An unknown patient or surgery skips the report with a
    RowSkipped diagnostic. Nothing is committed here.
    """
    result = ImportResult()

    patient = store.find_patient(patient_key)
    if patient is None:
        result.diagnostics.append(Diagnostic(
            kind=DiagnosticKind.ROW_SKIPPED,
            message=f"lab report skipped: patient {patient_key} not found",
            sheet=LAB_REPORT_SOURCE,
            key=patient_key,
        ))
        result.add_count(RecordKind.LAB_DATA, 0)
        return result

    surgery = None
    if surgery_date is not None:
        try:
            surgery = store.find_surgery(patient, surgery_date)
        except AmbiguousSurgeryError as exc:
            reason = str(exc)
        else:
            reason = f"no surgery for patient {patient_key} on {surgery_date.isoformat()}"
        if surgery is None:
            result.diagnostics.append(Diagnostic(
                kind=DiagnosticKind.ROW_SKIPPED,
                message=f"lab report skipped: {reason}",
                sheet=LAB_REPORT_SOURCE,
                key=patient_key,
            ))
            result.add_count(RecordKind.LAB_DATA, 0)
            return result

    report = parse_lab_report(text, mapper=mapper)
    registry = get_field_registry(RecordKind.LAB_DATA)

    lab_data = LabData(patient=patient, surgery=surgery, test_date=test_date)
    for item in report.items:
        spec = registry.get(item.field)
        if spec is None:
            result.diagnostics.append(Diagnostic(
                kind=DiagnosticKind.FIELD_UNMAPPED,
                message=f"'{item.label}' maps to unknown lab field '{item.field}'",
                sheet=LAB_REPORT_SOURCE,
                row=item.line_number,
                key=patient_key,
            ))
            continue
        try:
            spec.apply(lab_data, item.value)
        except ValidationError as exc:
            result.diagnostics.append(Diagnostic(
                kind=DiagnosticKind.VALUE_UNPARSABLE,
                message=f"'{item.label}' value rejected: {' '.join(exc.messages)}",
                sheet=LAB_REPORT_SOURCE,
                row=item.line_number,
                key=patient_key,
            ))

    for entry in report.unmatched:
        result.diagnostics.append(Diagnostic(
            kind=entry.kind,
            message=f"{entry.reason}: {entry.line.strip()}",
            sheet=LAB_REPORT_SOURCE,
            row=entry.line_number,
            key=patient_key,
        ))

    store.create(lab_data)
    result.add_count(RecordKind.LAB_DATA, 1)

    logger.info(
        'Lab report parsed',
        extra={
            'patient_key': patient_key,
            'items_count': report.parsed_count,
            'unmatched_count': len(report.unmatched),
        }
    )
    return result
