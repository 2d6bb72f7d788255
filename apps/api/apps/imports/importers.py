"""
Row Importers, one per record kind.

Each importer reads the data rows of one classified sheet by column
position (the practice's workbook layout), resolves the owning records by
natural key through the store, and stages one record per row.

Row-level problems never abort the sheet: the row (or the single field) is
left out and a Diagnostic is added to the run result.
"""
from typing import List, Optional, Sequence, Tuple

from django.core.exceptions import ImproperlyConfigured, ValidationError
from openpyxl.utils import get_column_letter

from apps.clinical.calculations import estimate_timing
from apps.clinical.models import (
    FollowUp,
    LabData,
    Patient,
    Surgery,
    resolve_surgery_category,
)
from apps.core.observability import get_sanitized_logger, metrics
from apps.core.observability.events import log_row_skipped
from apps.imports.documents import Sheet, SheetRow
from apps.imports.exceptions import AmbiguousSurgeryError
from apps.imports.fields import (
    RECORD_MODELS,
    FieldMapper,
    FieldSpec,
    ValueKind,
    build_field_registry,
    default_mapper,
)
from apps.imports.normalizers import cell_text, clean_string, parse_date
from apps.imports.results import Diagnostic, DiagnosticKind, ImportResult, RecordKind

logger = get_sanitized_logger(__name__)

# Fat-injection procedures without a type column are recorded under this type
DEFAULT_FAT_INJECTION_TYPE = '脂肪注入'


# ============================================================================
# Column layouts (column A first; None marks a column that is not imported)
# ============================================================================

PATIENT_LAYOUT = (
    '患者ID', '年齢', '性別', '連絡先', '登録日', '備考',
)

SURGERY_LAYOUT = (
    '患者ID',                                   # A
    '手術カテゴリ', '術式', '脂肪注入種別',      # B-D
    'BMI', '麻酔方法', 'インプラントメーカー',   # E-G
    'VECTRA術前(R)', 'VECTRA術前(L)',           # H-I
    '手術日',                                   # J
    None,                                       # K: duplicate of 術式
    '喫煙歴', '授乳歴', '手術回数',              # L-N
    '身長', '体重',                              # O-P
    'NAC-IMF(R)', 'NAC-IMFon stretch(R)',       # Q-R
    'NAC-IMF(L)', 'NAC-IMFon stretch(L)',       # S-T
    '皮膚厚(R)', '皮膚厚(L)',                    # U-V
    '採取部位', '注入量(R)', '注入量(L)',         # W-Y
    '皮下(R)', '乳腺下(R)', '大胸筋内下(R)',      # Z-AB
    '皮下(L)', '乳腺下(L)', '大胸筋内下(L)',      # AC-AE
    'デコルテ(R)', 'デコルテ(L)',                # AF-AG
    '備考',                                     # AH
    'インプラントサイズ(R)', 'インプラントサイズ(L)',  # AI-AJ
    'インプラント形状', '挿入位置', '切開位置',     # AK-AM
    '吸引量', '吸引機器',                        # AN-AO
)

LAB_DATA_LAYOUT = (
    '患者ID', '検査日',
    '白血球数(WBC)', '赤血球数(RBC)', '血色素量(Hb)', 'ヘマトクリット(Ht)',
    'MCV', 'MCH', 'MCHC', '血小板数',
    'PT時間', '対照', 'PT活性値', 'PT-INR', 'APTT',
    '総蛋白(TP)', '尿酸(UA)', '尿素窒素(UN)', '間接ビリルビン', 'クレアチニン(CREA)',
    'ナトリウム(Na)', 'カリウム(K)', 'クロール(Cl)', '鉄(Fe)',
    '総コレステロール', '中性脂肪(TG)', '総ビリルビン', '直接ビリルビン',
    'AST(GOT)', 'ALT(GPT)', 'γ-GTP', '血糖',
    'HBs抗原判定', 'HBs抗原定量値', 'HBs抗体判定', 'HBs抗体定量値',
    '血液型 ABO式', '血液型 Rh(D)式', 'RPR法 定性', '梅毒TP抗体定性',
    'HbA1c', 'HCV抗体判定', 'HCV抗体インデックス', 'HCV抗体ユニット',
    'HIV抗原・抗体同時定性', 'ALP', 'LDH',
)

FOLLOW_UP_LAYOUT = (
    '患者ID', '手術日',
    'フォローアップ日', '測定日', '経過時期',
    'VECTRA体積(R)', 'VECTRA体積(L)',
    None, None,                                 # H-I: retention rates, always recomputed
    '体重', '備考',
    'BreastQ', '喫煙状況', '飲酒状況', 'O2カプセル',
)

PATIENT_KEY_COLUMN = 0
FOLLOW_UP_SURGERY_DATE_COLUMN = 1


class _RowSkipped(Exception):
    """Internal signal: leave this row out of the run."""

    def __init__(self, reason, key=None):
        self.reason = reason
        self.key = key
        super().__init__(reason)


class _BoundColumn:
    """A layout column resolved to the canonical field it fills."""

    def __init__(self, index: int, label: str, spec: FieldSpec):
        self.index = index
        self.label = label
        self.spec = spec

    @property
    def letter(self):
        return get_column_letter(self.index + 1)


class RowImporter:
    """
    Base row importer.

    Subclasses set `kind`, `layout` and `key_columns` and implement
    `import_row`, which stages one record or raises _RowSkipped.
    """
    kind: RecordKind = None
    layout: Sequence[Optional[str]] = ()
    key_columns: Tuple[int, ...] = (PATIENT_KEY_COLUMN,)

    def __init__(self, store, mapper: Optional[FieldMapper] = None):
        self.store = store
        self.columns = self._bind_columns(mapper or default_mapper)

    def _bind_columns(self, mapper: FieldMapper) -> List[_BoundColumn]:
        model = RECORD_MODELS[self.kind]
        labelled = [
            (index, label, mapper.map_field(label))
            for index, label in enumerate(self.layout)
            if label is not None and index not in self.key_columns
        ]
        unmapped = [label for _, label, mapping in labelled if mapping is None]
        if unmapped:
            raise ImproperlyConfigured(
                f"{self.kind.value} layout labels have no field mapping: {', '.join(unmapped)}"
            )

        registry = build_field_registry(model, [mapping for _, _, mapping in labelled])
        columns = []
        for index, label, mapping in labelled:
            spec = registry.get(mapping.field)
            if spec is None:
                raise ImproperlyConfigured(
                    f"{self.kind.value} layout label '{label}' maps to "
                    f"'{mapping.field}', which {model.__name__} does not have"
                )
            columns.append(_BoundColumn(index, label, spec))
        return columns

    # ------------------------------------------------------------------
    # Sheet processing
    # ------------------------------------------------------------------

    def import_sheet(self, sheet: Sheet, result: ImportResult, epoch=None) -> int:
        """
        Import every data row of `sheet`; returns the number of rows staged.

        Skipped rows and field problems are appended to `result.diagnostics`.
        """
        self._report_extra_columns(sheet, result)

        imported = 0
        for row in sheet.rows:
            key = clean_string(row.get(PATIENT_KEY_COLUMN))
            try:
                if not key:
                    raise _RowSkipped('empty patient ID')
                self.import_row(row, key, sheet, result, epoch)
            except _RowSkipped as skip:
                self._skip_row(sheet, row, skip.key or key, skip.reason, result)
                continue
            imported += 1

        result.add_count(self.kind, imported)
        metrics.import_rows_total.labels(kind=self.kind.value, result='imported').inc(imported)
        logger.info(
            'Sheet imported',
            extra={
                'record_kind': self.kind.value,
                'sheet': sheet.name,
                'rows_count': len(sheet.rows),
                'imported_count': imported,
            }
        )
        return imported

    def import_row(self, row: SheetRow, key: str, sheet: Sheet, result: ImportResult, epoch=None):
        raise NotImplementedError

    def apply_cells(self, record, row: SheetRow, sheet: Sheet, result: ImportResult, epoch=None):
        """
        Set each mapped field whose cell normalizes to a value.

        Blank cells are ignored and never clear an existing value. A value
        that does not parse, or that the record cannot hold (too long, out
        of range), leaves the field unset and adds a ValueUnparsable
        diagnostic.
        """
        for column in self.columns:
            raw = row.get(column.index)
            if not cell_text(raw):
                continue
            value = column.spec.normalize(raw, epoch)
            if value is None:
                if column.spec.kind == ValueKind.STRING or column.spec.is_unreported(raw):
                    continue
                self._value_rejected(
                    column, row, sheet, result,
                    f"cannot read '{cell_text(raw)}' as {column.spec.kind.value}",
                )
                continue
            try:
                column.spec.apply(record, value)
            except ValidationError as exc:
                self._value_rejected(
                    column, row, sheet, result,
                    f"'{cell_text(raw)}' rejected: {' '.join(exc.messages)}",
                )

    def _value_rejected(self, column: _BoundColumn, row: SheetRow, sheet: Sheet,
                        result: ImportResult, reason: str):
        self._add_diagnostic(result, Diagnostic(
            kind=DiagnosticKind.VALUE_UNPARSABLE,
            message=f"column {column.letter} ({column.label}): {reason}",
            sheet=sheet.name,
            row=row.number,
            key=clean_string(row.get(PATIENT_KEY_COLUMN)),
        ))

    def require_patient(self, key: str) -> Patient:
        patient = self.store.find_patient(key)
        if patient is None:
            raise _RowSkipped(f"patient {key} not found")
        return patient

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _report_extra_columns(self, sheet: Sheet, result: ImportResult):
        for index, label in sheet.header_labels().items():
            if index < len(self.layout):
                continue
            self._add_diagnostic(result, Diagnostic(
                kind=DiagnosticKind.FIELD_UNMAPPED,
                message=f"column {get_column_letter(index + 1)} ({label}) is not imported",
                sheet=sheet.name,
            ))

    def _skip_row(self, sheet: Sheet, row: SheetRow, key, reason, result: ImportResult):
        self._add_diagnostic(result, Diagnostic(
            kind=DiagnosticKind.ROW_SKIPPED,
            message=f"{self.kind.value} row skipped: {reason}",
            sheet=sheet.name,
            row=row.number,
            key=key or None,
        ))
        metrics.import_rows_total.labels(kind=self.kind.value, result='skipped').inc()
        log_row_skipped(self.kind.value, sheet.name, row.number, key, reason)

    @staticmethod
    def _add_diagnostic(result: ImportResult, diagnostic: Diagnostic):
        result.diagnostics.append(diagnostic)
        metrics.import_diagnostics_total.labels(kind=diagnostic.kind.value).inc()


class PatientImporter(RowImporter):
    """Upserts patients by patient ID; a repeated ID updates the same record."""
    kind = RecordKind.PATIENT
    layout = PATIENT_LAYOUT

    def import_row(self, row, key, sheet, result, epoch=None):
        max_length = Patient._meta.get_field('patient_id').max_length
        if len(key) > max_length:
            raise _RowSkipped(f"patient ID is longer than {max_length} characters")
        patient = self.store.find_patient(key)
        if patient is None:
            patient = Patient(patient_id=key)
        self.apply_cells(patient, row, sheet, result, epoch)
        if not patient.name:
            patient.name = f"患者{key}"
        self.store.upsert(patient)
        return patient


class SurgeryImporter(RowImporter):
    kind = RecordKind.SURGERY
    layout = SURGERY_LAYOUT

    def import_row(self, row, key, sheet, result, epoch=None):
        surgery = Surgery(patient=self.require_patient(key))
        self.apply_cells(surgery, row, sheet, result, epoch)

        surgery.surgery_category = resolve_surgery_category(
            surgery.surgery_category_label, surgery.surgery_type
        )
        if surgery.procedure:
            self._compose_procedure(surgery, row, sheet, result)
        # A sheet BMI is only kept when it cannot be computed
        if surgery.height_cm is not None and surgery.body_weight_kg is not None:
            surgery.reported_bmi = None

        self.store.create(surgery)
        return surgery

    def _compose_procedure(self, surgery, row, sheet, result):
        surgery_type = surgery.surgery_type or DEFAULT_FAT_INJECTION_TYPE
        procedure = f"{surgery_type} ({surgery.procedure})"
        max_length = Surgery._meta.get_field('procedure').max_length
        if len(procedure) > max_length:
            self._add_diagnostic(result, Diagnostic(
                kind=DiagnosticKind.VALUE_UNPARSABLE,
                message=(
                    f"procedure '{procedure}' is longer than {max_length} characters; "
                    f"kept without the surgery type"
                ),
                sheet=sheet.name,
                row=row.number,
                key=clean_string(row.get(PATIENT_KEY_COLUMN)),
            ))
            return
        surgery.procedure = procedure


class LabDataImporter(RowImporter):
    """Every row is a new lab panel; existing panels are never matched."""
    kind = RecordKind.LAB_DATA
    layout = LAB_DATA_LAYOUT

    def import_row(self, row, key, sheet, result, epoch=None):
        lab_data = LabData(patient=self.require_patient(key))
        self.apply_cells(lab_data, row, sheet, result, epoch)
        self.store.create(lab_data)
        return lab_data


class FollowUpImporter(RowImporter):
    """
    Follow-ups hang off the surgery identified by (patient, surgery date).

    Two surgeries on the same day for one patient cannot be told apart by
    that key; such rows are skipped.
    """
    kind = RecordKind.FOLLOW_UP
    layout = FOLLOW_UP_LAYOUT
    key_columns = (PATIENT_KEY_COLUMN, FOLLOW_UP_SURGERY_DATE_COLUMN)

    def import_row(self, row, key, sheet, result, epoch=None):
        patient = self.require_patient(key)

        surgery_date = parse_date(row.get(FOLLOW_UP_SURGERY_DATE_COLUMN), epoch=epoch)
        if surgery_date is None:
            raw_date = row.text(FOLLOW_UP_SURGERY_DATE_COLUMN)
            if raw_date:
                raise _RowSkipped(f"cannot read surgery date '{raw_date}'")
            raise _RowSkipped('surgery date is empty')

        try:
            surgery = self.store.find_surgery(patient, surgery_date)
        except AmbiguousSurgeryError as exc:
            raise _RowSkipped(str(exc))
        if surgery is None:
            raise _RowSkipped(f"no surgery for patient {key} on {surgery_date.isoformat()}")

        follow_up = FollowUp(surgery=surgery)
        self.apply_cells(follow_up, row, sheet, result, epoch)
        if not follow_up.timing and follow_up.observed_date is not None:
            follow_up.timing = estimate_timing((follow_up.observed_date - surgery_date).days)

        self.store.create(follow_up)
        return follow_up


IMPORTERS = {
    RecordKind.PATIENT: PatientImporter,
    RecordKind.SURGERY: SurgeryImporter,
    RecordKind.LAB_DATA: LabDataImporter,
    RecordKind.FOLLOW_UP: FollowUpImporter,
}


def get_importer(kind: RecordKind, store, mapper: Optional[FieldMapper] = None) -> RowImporter:
    return IMPORTERS[kind](store, mapper=mapper)
