"""
Sheet Classifier: decide which record kind a sheet holds from its header row.
"""
from typing import Iterable, List, Optional, Tuple

from apps.imports.documents import Sheet, TabularDocument
from apps.imports.fields import normalize_header
from apps.imports.results import IMPORT_ORDER, RecordKind

# Checked in this order; the first rule whose headers are all present wins
CLASSIFICATION_RULES = (
    (RecordKind.PATIENT, frozenset({'患者ID', '年齢', '登録日'})),
    (RecordKind.SURGERY, frozenset({'術式', '手術日', '手術カテゴリ'})),
    (RecordKind.LAB_DATA, frozenset({'検査日', '白血球数(WBC)'})),
    (RecordKind.FOLLOW_UP, frozenset({'フォローアップ日', 'VECTRA体積(R)'})),
)


def classify_headers(headers: Iterable[str]) -> Optional[RecordKind]:
    """Record kind for a header row, or None when no rule matches."""
    present = {normalize_header(header) for header in headers if header}
    for kind, required in CLASSIFICATION_RULES:
        if required <= present:
            return kind
    return None


def classify_sheet(sheet: Sheet) -> Optional[RecordKind]:
    return classify_headers(sheet.header_labels().values())


def plan_import(document: TabularDocument) -> Tuple[List[Tuple[RecordKind, Sheet]], List[str]]:
    """
    Classify every sheet and order them for import.

    Returns the (kind, sheet) pairs sorted into dependency order (patients,
    surgeries, lab data, follow-ups), keeping document order among sheets of
    the same kind, plus the names of unrecognized sheets.
    """
    classified = []
    unrecognized = []
    for sheet in document.sheets:
        kind = classify_sheet(sheet)
        if kind is None:
            unrecognized.append(sheet.name)
        else:
            classified.append((kind, sheet))

    # sorted() is stable, so same-kind sheets keep their document order
    plan = sorted(classified, key=lambda pair: IMPORT_ORDER.index(pair[0]))
    return plan, unrecognized
