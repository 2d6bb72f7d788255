"""
Value normalizers for spreadsheet cells and lab-report lines.

Every function here is total: bad input yields None, never an exception.
The caller decides whether a None is worth a diagnostic.
"""
import math
import re
from datetime import date, datetime
from typing import Optional

from openpyxl.utils.datetime import from_excel

# Tried in order; the first two are the formats the practice writes
DATE_FORMATS = ('%Y/%m/%d', '%Y-%m-%d', '%m/%d/%Y', '%d.%m.%Y')

# Upstream export bug leaves this token behind in text cells
EXPORT_ARTIFACT = ', true'

# Annotation markers on clinical lab values, stripped in this order
LAB_ANNOTATION_MARKERS = ('(+)', '(-)', '<', '>', 'LT', 'H', 'L', '↑', '↓')

# A lab value of exactly zero means "no result" in the practice's exports
LAB_NOT_REPORTED = '0'

_DECIMAL_RE = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')
_INTEGER_RE = re.compile(r'^[+-]?\d+$')


def cell_text(value) -> str:
    """
    Text form of a raw cell value.

    Integral floats lose their trailing '.0' so that numeric patient IDs
    read back as typed ('1001', not '1001.0').
    """
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat(sep=' ')
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def clean_string(value) -> Optional[str]:
    """Trimmed text with the export artifact removed; None when empty."""
    text = cell_text(value).replace(EXPORT_ARTIFACT, '').strip()
    return text or None


def _to_float(text: str) -> Optional[float]:
    if not _DECIMAL_RE.match(text):
        return None
    number = float(text)
    if not math.isfinite(number):
        return None
    return number


def parse_decimal(value) -> Optional[float]:
    """Plain numeric value, thousands separators allowed."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = cell_text(value).replace(',', '').strip()
    if not text:
        return None
    return _to_float(text)


def parse_integer(value) -> Optional[int]:
    """Whole number; '12.0' from a numeric cell is accepted, '12.5' is not."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = cell_text(value).replace(',', '').strip()
    if not _INTEGER_RE.match(text):
        return None
    return int(text)


def clean_lab_value(value) -> str:
    """Lab value text with annotation markers and separators removed."""
    text = cell_text(value)
    for marker in LAB_ANNOTATION_MARKERS:
        text = text.replace(marker, '')
    return text.replace(',', '').strip()


def is_lab_value_unreported(value) -> bool:
    return clean_lab_value(value) == LAB_NOT_REPORTED


def parse_lab_value(value) -> Optional[float]:
    """
    Numeric clinical lab value.

    'H12.3' -> 12.3, '<5' -> 5.0, '8.1↑' -> 8.1. A cleaned value of exactly
    '0' is "not reported" and yields None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value == 0 or not math.isfinite(value):
            return None
        return float(value)
    text = clean_lab_value(value)
    if not text or text == LAB_NOT_REPORTED:
        return None
    return _to_float(text)


def parse_date(value, epoch=None) -> Optional[date]:
    """
    Calendar date from a cell.

    Native date/datetime cells are taken as-is. Text is tried against
    DATE_FORMATS in order; a bare number is read as a spreadsheet serial
    date (using the workbook's epoch when given). Never substitutes today.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _serial_to_date(value, epoch)

    text = cell_text(value)
    if not text:
        return None
    # '2024-03-15 00:00:00' from text exports of date cells
    candidate = text.split(' ')[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue

    serial = _to_float(text)
    if serial is not None:
        return _serial_to_date(serial, epoch)
    return None


def _serial_to_date(serial, epoch=None) -> Optional[date]:
    if not math.isfinite(serial) or serial < 1:
        return None
    try:
        if epoch is None:
            converted = from_excel(serial)
        else:
            converted = from_excel(serial, epoch=epoch)
    except (OverflowError, ValueError):
        return None
    if isinstance(converted, datetime):
        return converted.date()
    if isinstance(converted, date):
        return converted
    return None
