"""
Tabular documents: named sheets of cells addressed by column and row.

Readers:
- `.xlsx` workbooks, through openpyxl (cached formula values, shared
  strings resolved by the library).
- Delimited text (`.csv`), read as a single sheet named after the file.

Any failure to open or parse the document raises DocumentError; nothing
downstream sees a half-read document.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from xml.etree.ElementTree import ParseError
from zipfile import BadZipFile

from django.conf import settings
from openpyxl import load_workbook
from openpyxl.utils.cell import coordinate_from_string
from openpyxl.utils.exceptions import CellCoordinatesException, InvalidFileException

from apps.core.observability import get_sanitized_logger
from apps.imports.exceptions import DocumentError
from apps.imports.normalizers import cell_text

logger = get_sanitized_logger(__name__)

WORKBOOK_EXTENSIONS = {'.xlsx', '.xlsm'}
DELIMITED_EXTENSIONS = {'.csv'}


def column_letter_to_index(letters: str) -> Optional[int]:
    """
    Zero-based column index of a spreadsheet column reference.

    'A' -> 0, 'Z' -> 25, 'AA' -> 26. Returns None for an empty reference or
    one containing anything but ASCII letters.
    """
    if not letters:
        return None
    index = 0
    for char in letters.upper():
        if not ('A' <= char <= 'Z'):
            return None
        index = index * 26 + (ord(char) - ord('A') + 1)
    return index - 1


def split_delimited_line(line: str, delimiter: str = ',') -> List[str]:
    """
    Split one line of delimited text.

    A double quote toggles the in-quote state, inside which the delimiter
    does not split. Quote characters themselves are dropped and every field
    is trimmed.
    """
    fields = []
    current = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
    fields.append(''.join(current).strip())
    return fields


@dataclass
class SheetRow:
    """A data row: 1-based sheet row number and raw values by column index."""
    number: int
    cells: Dict[int, Any]

    def get(self, column: int):
        return self.cells.get(column)

    def text(self, column: int) -> str:
        return cell_text(self.cells.get(column))


@dataclass
class Sheet:
    name: str
    header: Dict[int, Any] = field(default_factory=dict)
    rows: List[SheetRow] = field(default_factory=list)

    def header_labels(self) -> Dict[int, str]:
        """Non-empty header texts by column index."""
        labels = {}
        for column, value in sorted(self.header.items()):
            text = cell_text(value)
            if text:
                labels[column] = text
        return labels


@dataclass
class TabularDocument:
    """
    A parsed input document.

    `epoch` is the workbook's serial-date base (1900 or 1904 system); None
    means the 1900 system.
    """
    name: str
    sheets: List[Sheet] = field(default_factory=list)
    epoch: Any = None


# ============================================================================
# Workbooks
# ============================================================================

# Raised by openpyxl/zipfile/ElementTree for damaged or non-workbook input
_WORKBOOK_ERRORS = (
    InvalidFileException,
    BadZipFile,
    ParseError,
    KeyError,
    ValueError,
    TypeError,
    OSError,
)


def _read_worksheet(worksheet) -> Sheet:
    sheet = Sheet(name=worksheet.title)
    for position, row in enumerate(worksheet.iter_rows()):
        cells = {}
        row_number = None
        for cell in row:
            if cell.value is None:
                continue
            try:
                column_letter, row_number = coordinate_from_string(cell.coordinate)
            except CellCoordinatesException as exc:
                raise DocumentError(f"Bad cell reference in sheet '{worksheet.title}': {exc}") from exc
            column = column_letter_to_index(column_letter)
            if column is None:
                raise DocumentError(
                    f"Bad column reference '{column_letter}' in sheet '{worksheet.title}'"
                )
            cells[column] = cell.value
        if position == 0:
            sheet.header = cells
        elif cells:
            sheet.rows.append(SheetRow(number=row_number, cells=cells))
    return sheet


def read_workbook(source, name: Optional[str] = None) -> TabularDocument:
    """
    Read an .xlsx workbook from a path or binary file object.

    Formula cells yield their cached values.
    """
    document_name = name or os.path.basename(str(getattr(source, 'name', source)))
    try:
        workbook = load_workbook(source, data_only=True)
    except _WORKBOOK_ERRORS as exc:
        raise DocumentError(f"Cannot open workbook '{document_name}': {exc}") from exc

    try:
        sheets = [_read_worksheet(worksheet) for worksheet in workbook.worksheets]
    except _WORKBOOK_ERRORS as exc:
        raise DocumentError(f"Cannot read workbook '{document_name}': {exc}") from exc
    finally:
        workbook.close()

    logger.info(
        'Workbook read',
        extra={'document_name': document_name, 'sheets_count': len(sheets)}
    )
    return TabularDocument(name=document_name, sheets=sheets, epoch=workbook.epoch)


# ============================================================================
# Delimited text
# ============================================================================

def parse_delimited_text(text: str, sheet_name: str) -> TabularDocument:
    """One-sheet document from CSV text; row 1 is the header."""
    sheet = Sheet(name=sheet_name)
    for number, line in enumerate(text.splitlines(), start=1):
        values = split_delimited_line(line)
        cells = {column: value for column, value in enumerate(values) if value}
        if number == 1:
            sheet.header = cells
        elif cells:
            sheet.rows.append(SheetRow(number=number, cells=cells))
    return TabularDocument(name=sheet_name, sheets=[sheet])


def read_delimited(source, name: Optional[str] = None, encoding: Optional[str] = None) -> TabularDocument:
    """Read a CSV document from a path or binary file object."""
    encoding = encoding or settings.CASEFILE_IMPORT['CSV_ENCODING']
    document_name = name or os.path.basename(str(getattr(source, 'name', source)))
    try:
        if hasattr(source, 'read'):
            raw = source.read()
        else:
            with open(source, 'rb') as handle:
                raw = handle.read()
        text = raw.decode(encoding) if isinstance(raw, bytes) else raw
    except (OSError, UnicodeDecodeError, LookupError) as exc:
        raise DocumentError(f"Cannot read '{document_name}' as {encoding} text: {exc}") from exc

    sheet_name = os.path.splitext(document_name)[0]
    document = parse_delimited_text(text, sheet_name)
    document.name = document_name
    return document


def read_document(source, name: Optional[str] = None) -> TabularDocument:
    """
    Read a workbook or CSV file, choosing the reader by file extension.

    `name` overrides the file name (uploads carry it separately from the
    stream).
    """
    document_name = name or os.path.basename(str(getattr(source, 'name', source)))
    extension = os.path.splitext(document_name)[1].lower()
    allowed = {ext.lower() for ext in settings.CASEFILE_IMPORT['ALLOWED_EXTENSIONS']}

    if extension not in allowed:
        raise DocumentError(
            f"Unsupported file type '{extension or document_name}'. "
            f"Allowed: {', '.join(sorted(allowed))}"
        )
    if extension in WORKBOOK_EXTENSIONS:
        return read_workbook(source, name=document_name)
    if extension in DELIMITED_EXTENSIONS:
        return read_delimited(source, name=document_name)
    raise DocumentError(f"No reader for file type '{extension}'")
