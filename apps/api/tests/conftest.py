"""
Global test fixtures for pytest.

Provides reusable fixtures for API and import testing:
- Authenticated / unauthenticated API clients
- Builders for in-memory sheets and .xlsx workbooks in the practice layout
- Model instances (Patient, Surgery)
"""
import io
from datetime import date

import pytest
from django.contrib.auth import get_user_model
from openpyxl import Workbook
from rest_framework.test import APIClient

from apps.clinical.models import Patient, Surgery, SurgeryCategoryChoices
from apps.imports.documents import Sheet, SheetRow, TabularDocument
from apps.imports.importers import (
    FOLLOW_UP_LAYOUT,
    LAB_DATA_LAYOUT,
    PATIENT_LAYOUT,
    SURGERY_LAYOUT,
)
from apps.imports.results import RecordKind

LAYOUTS = {
    RecordKind.PATIENT: PATIENT_LAYOUT,
    RecordKind.SURGERY: SURGERY_LAYOUT,
    RecordKind.LAB_DATA: LAB_DATA_LAYOUT,
    RecordKind.FOLLOW_UP: FOLLOW_UP_LAYOUT,
}


def layout_header(kind):
    """Header row for a record kind; unimported columns get a filler label."""
    return [label or f'未使用{index}' for index, label in enumerate(LAYOUTS[kind])]


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_user(db):
    User = get_user_model()
    return User.objects.create_superuser(
        username='admin',
        email='admin@test.com',
        password='testpass123',
    )


@pytest.fixture
def admin_client(admin_user):
    """Authenticated API client (staff user)."""
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


# ============================================================================
# Sheets and workbooks
# ============================================================================

@pytest.fixture
def sheet_factory():
    """
    Build an in-memory Sheet in the practice layout.

    Usage:
        sheet = sheet_factory(RecordKind.PATIENT, [
            {'患者ID': 'P001', '年齢': '35'},
        ])

    Rows are dicts keyed by layout label (or lists of positional values).
    Data rows are numbered from 2, as in a workbook.
    """
    def build(kind, rows, name=None, header=None):
        header = header if header is not None else layout_header(kind)
        sheet = Sheet(
            name=name or kind.value,
            header={index: label for index, label in enumerate(header)},
        )
        for offset, values in enumerate(rows):
            if isinstance(values, dict):
                cells = {header.index(label): value for label, value in values.items()}
            else:
                cells = {index: value for index, value in enumerate(values) if value is not None}
            sheet.rows.append(SheetRow(number=offset + 2, cells=cells))
        return sheet
    return build


@pytest.fixture
def document_factory():
    def build(*sheets, name='casefile.xlsx'):
        return TabularDocument(name=name, sheets=list(sheets))
    return build


@pytest.fixture
def xlsx_factory():
    """
    Build an .xlsx workbook in memory.

    Usage:
        data = xlsx_factory({'Patients': (header, [row, row])})
    Returns a BytesIO positioned at 0.
    """
    def build(sheets):
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, (header, rows) in sheets.items():
            worksheet = workbook.create_sheet(title=title)
            worksheet.append(list(header))
            for row in rows:
                worksheet.append(list(row))
        buffer = io.BytesIO()
        workbook.save(buffer)
        buffer.seek(0)
        return buffer
    return build


@pytest.fixture
def practice_workbook(xlsx_factory):
    """
    Build an .xlsx workbook with one sheet per record kind in the practice layout.

    Usage:
        data = practice_workbook(
            patients=[{'患者ID': 'P001', '年齢': 34}],
            surgeries=[{'患者ID': 'P001', '手術日': '2024/03/15'}],
        )
    Kinds without rows get no sheet.
    """
    def build(patients=(), surgeries=(), lab_data=(), follow_ups=()):
        sheets = {}
        for title, kind, rows in (
            ('患者', RecordKind.PATIENT, patients),
            ('手術', RecordKind.SURGERY, surgeries),
            ('検査', RecordKind.LAB_DATA, lab_data),
            ('経過', RecordKind.FOLLOW_UP, follow_ups),
        ):
            if not rows:
                continue
            header = layout_header(kind)
            sheets[title] = (header, [[row.get(label) for label in header] for row in rows])
        return xlsx_factory(sheets)
    return build


# ============================================================================
# Model instances
# ============================================================================

@pytest.fixture
def patient(db):
    return Patient.objects.create(
        patient_id='P001',
        age=34,
        gender='女性',
        registered_date=date(2024, 1, 10),
    )


@pytest.fixture
def fat_graft_surgery(patient):
    return Surgery.objects.create(
        patient=patient,
        surgery_date=date(2024, 3, 15),
        surgery_category=SurgeryCategoryChoices.BREAST_AUGMENTATION,
        surgery_category_label='豊胸系',
        surgery_type='脂肪豊胸',
        height_cm=160.0,
        body_weight_kg=52.0,
        pre_op_vectra_right=200.0,
        pre_op_vectra_left=210.0,
        injection_volume_right=250.0,
        injection_volume_left=240.0,
    )
