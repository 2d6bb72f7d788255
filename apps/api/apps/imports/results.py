"""
Import run results: per-kind success counts and non-fatal diagnostics.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class RecordKind(str, Enum):
    """Record kinds in import dependency order."""
    PATIENT = 'patient'
    SURGERY = 'surgery'
    LAB_DATA = 'lab_data'
    FOLLOW_UP = 'follow_up'


# Owners are always imported before the records that reference them
IMPORT_ORDER = (
    RecordKind.PATIENT,
    RecordKind.SURGERY,
    RecordKind.LAB_DATA,
    RecordKind.FOLLOW_UP,
)


class DiagnosticKind(str, Enum):
    ROW_SKIPPED = 'row_skipped'
    FIELD_UNMAPPED = 'field_unmapped'
    VALUE_UNPARSABLE = 'value_unparsable'
    SHEET_UNRECOGNIZED = 'sheet_unrecognized'


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal problem found during an import run."""
    kind: DiagnosticKind
    message: str
    sheet: Optional[str] = None
    row: Optional[int] = None
    key: Optional[str] = None

    def __str__(self):
        location = []
        if self.sheet:
            location.append(self.sheet)
        if self.row is not None:
            location.append(f"row {self.row}")
        if location:
            return f"[{' '.join(location)}] {self.message}"
        return self.message

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'sheet': self.sheet,
            'row': self.row,
            'key': self.key,
            'message': str(self),
        }


@dataclass
class ImportResult:
    """
    Outcome of one import run.

    `counts` holds successfully imported rows per record kind;
    `diagnostics` is the flat list of skipped rows, unmapped labels and
    unparsable values, in the order they were found.
    """
    counts: Dict[RecordKind, int] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    unrecognized_sheets: List[str] = field(default_factory=list)
    dry_run: bool = False

    def add_count(self, kind: RecordKind, count: int):
        self.counts[kind] = self.counts.get(kind, 0) + count

    def count_for(self, kind: RecordKind) -> int:
        return self.counts.get(kind, 0)

    def diagnostics_of(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == kind]

    @property
    def total_imported(self):
        return sum(self.counts.values())

    def summary_lines(self):
        """Human-readable summary, one line per record kind then diagnostics."""
        lines = [
            f"{kind.value}: {self.counts[kind]}"
            for kind in IMPORT_ORDER
            if kind in self.counts
        ]
        lines.extend(str(d) for d in self.diagnostics)
        return lines

    def to_dict(self):
        return {
            'counts': {kind.value: count for kind, count in self.counts.items()},
            'diagnostics': [d.to_dict() for d in self.diagnostics],
            'unrecognized_sheets': list(self.unrecognized_sheets),
            'dry_run': self.dry_run,
        }
