"""
Tests for the row importers against the in-memory record store.

No database access: records are unsaved model instances held by
InMemoryRecordStore.
"""
from datetime import date

import pytest

from apps.clinical.models import Patient, Surgery, SurgeryCategoryChoices
from apps.imports.importers import (
    FollowUpImporter,
    LabDataImporter,
    PATIENT_LAYOUT,
    PatientImporter,
    SurgeryImporter,
)
from apps.imports.results import DiagnosticKind, ImportResult, RecordKind
from apps.imports.services import import_document
from apps.imports.store import InMemoryRecordStore


@pytest.fixture
def known_patient():
    return Patient(patient_id='P001', age=34)


@pytest.fixture
def seeded_store(known_patient):
    surgery = Surgery(
        patient=known_patient,
        surgery_date=date(2024, 3, 15),
        surgery_category=SurgeryCategoryChoices.BREAST_AUGMENTATION,
        surgery_type='脂肪豊胸',
        pre_op_vectra_right=200.0,
        injection_volume_right=250.0,
    )
    return InMemoryRecordStore(patients=[known_patient], surgeries=[surgery])


class TestPatientImporter:

    def test_patient_row(self, sheet_factory):
        store = InMemoryRecordStore()
        result = ImportResult()
        sheet = sheet_factory(RecordKind.PATIENT, [
            {'患者ID': 'P001', '年齢': '35', '性別': '女性', '登録日': '2024/01/10'},
        ])

        imported = PatientImporter(store).import_sheet(sheet, result)

        assert imported == 1
        patient = store.patients['P001']
        assert patient.age == 35
        assert patient.gender == '女性'
        assert patient.registered_date == date(2024, 1, 10)
        assert patient.name == '患者P001'
        assert result.diagnostics == []

    def test_repeated_key_updates_one_patient(self, sheet_factory):
        store = InMemoryRecordStore()
        result = ImportResult()
        sheet = sheet_factory(RecordKind.PATIENT, [
            {'患者ID': 'P001', '年齢': '35', '性別': '女性', '登録日': '2024/01/10'},
            {'患者ID': 'P001', '年齢': '36', '備考': '再来'},
        ])

        PatientImporter(store).import_sheet(sheet, result)

        assert list(store.patients) == ['P001']
        patient = store.patients['P001']
        assert patient.age == 36
        assert patient.notes == '再来'
        # Blank cells do not clear earlier values
        assert patient.gender == '女性'
        assert result.count_for(RecordKind.PATIENT) == 2

    def test_empty_key_skips_only_that_row(self, sheet_factory):
        store = InMemoryRecordStore()
        result = ImportResult()
        rows = [{'患者ID': f'P{i:03d}', '年齢': '30'} for i in range(1, 11)]
        rows[4] = {'年齢': '40'}
        sheet = sheet_factory(RecordKind.PATIENT, rows)

        imported = PatientImporter(store).import_sheet(sheet, result)

        assert imported == 9
        assert len(store.patients) == 9
        assert 'P005' not in store.patients
        [diagnostic] = result.diagnostics
        assert diagnostic.kind == DiagnosticKind.ROW_SKIPPED
        # Fifth data row sits on sheet row 6 (row 1 is the header)
        assert diagnostic.row == 6
        assert 'empty patient ID' in diagnostic.message

    def test_unparsable_value_keeps_row(self, sheet_factory):
        store = InMemoryRecordStore()
        result = ImportResult()
        sheet = sheet_factory(RecordKind.PATIENT, [
            {'患者ID': 'P001', '年齢': 'thirty', '性別': '女性'},
        ])

        imported = PatientImporter(store).import_sheet(sheet, result)

        assert imported == 1
        assert store.patients['P001'].gender == '女性'
        [diagnostic] = result.diagnostics_of(DiagnosticKind.VALUE_UNPARSABLE)
        assert diagnostic.row == 2
        assert diagnostic.key == 'P001'
        assert 'thirty' in diagnostic.message

    @pytest.mark.parametrize('cells, field_name', [
        ({'年齢': '200'}, 'age'),
        ({'年齢': '-3'}, 'age'),
        ({'性別': '女性' * 12}, 'gender'),
    ])
    def test_value_the_record_cannot_hold_is_dropped(self, sheet_factory, cells, field_name):
        store = InMemoryRecordStore()
        result = ImportResult()
        rows = [{'患者ID': f'P{i:03d}', '年齢': '30', '性別': '女性'} for i in range(1, 11)]
        rows[4] = {'患者ID': 'P005', '年齢': '30', '性別': '女性', **cells}
        sheet = sheet_factory(RecordKind.PATIENT, rows)

        imported = PatientImporter(store).import_sheet(sheet, result)

        assert imported == 10
        patient = store.patients['P005']
        if field_name == 'age':
            assert patient.age == 0
            assert patient.gender == '女性'
        else:
            assert patient.gender is None
            assert patient.age == 30
        [diagnostic] = result.diagnostics
        assert diagnostic.kind == DiagnosticKind.VALUE_UNPARSABLE
        assert diagnostic.row == 6
        assert diagnostic.key == 'P005'
        assert 'rejected' in diagnostic.message

    def test_overlong_patient_id_skips_row(self, sheet_factory):
        store = InMemoryRecordStore()
        result = ImportResult()
        sheet = sheet_factory(RecordKind.PATIENT, [
            {'患者ID': 'P' * 65, '年齢': '30'},
            {'患者ID': 'P002', '年齢': '41'},
        ])

        imported = PatientImporter(store).import_sheet(sheet, result)

        assert imported == 1
        assert list(store.patients) == ['P002']
        [diagnostic] = result.diagnostics_of(DiagnosticKind.ROW_SKIPPED)
        assert 'longer than 64' in diagnostic.message

    def test_extra_header_column_reported(self, sheet_factory):
        store = InMemoryRecordStore()
        result = ImportResult()
        header = list(PATIENT_LAYOUT) + ['担当医']
        sheet = sheet_factory(RecordKind.PATIENT, [
            {'患者ID': 'P001', '担当医': '佐藤'},
        ], header=header)

        PatientImporter(store).import_sheet(sheet, result)

        [diagnostic] = result.diagnostics_of(DiagnosticKind.FIELD_UNMAPPED)
        assert '担当医' in diagnostic.message
        assert diagnostic.row is None
        assert 'P001' in store.patients


class TestSurgeryImporter:

    def test_surgery_row(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [{
            '患者ID': 'P001',
            '手術カテゴリ': '豊胸系',
            '術式': '脂肪豊胸',
            '手術日': '2024/05/20',
            '身長': '160',
            '体重': '52',
            'BMI': '20.3',
            '注入量(R)': '250',
            '注入量(L)': '240',
            '手術回数': '2',
        }])

        imported = SurgeryImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 1
        surgery = seeded_store.surgeries[-1]
        assert surgery.patient.patient_id == 'P001'
        assert surgery.surgery_date == date(2024, 5, 20)
        assert surgery.surgery_category == SurgeryCategoryChoices.BREAST_AUGMENTATION
        assert surgery.surgery_category_label == '豊胸系'
        assert surgery.injection_volume_left == 240.0
        assert surgery.number_of_procedures == 2
        # BMI is computed from height and weight, not copied from the sheet
        assert surgery.reported_bmi is None
        assert surgery.bmi == pytest.approx(20.3, abs=0.05)
        assert result.diagnostics == []

    def test_reported_bmi_kept_without_height(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P001', '手術日': '2024/05/20', '体重': '52', 'BMI': '21.5'},
        ])

        SurgeryImporter(seeded_store).import_sheet(sheet, result)

        surgery = seeded_store.surgeries[-1]
        assert surgery.reported_bmi == 21.5
        assert surgery.bmi == 21.5

    def test_fat_injection_kind_composes_procedure(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P001', '手術日': '2024/05/20', '脂肪注入種別': 'コンデンスリッチ'},
            {'患者ID': 'P001', '手術日': '2024/06/20', '術式': '脂肪豊胸', '脂肪注入種別': 'ピュアグラフト'},
        ])

        SurgeryImporter(seeded_store).import_sheet(sheet, result)

        first, second = seeded_store.surgeries[-2:]
        assert first.procedure == '脂肪注入 (コンデンスリッチ)'
        assert second.procedure == '脂肪豊胸 (ピュアグラフト)'

    def test_negative_procedure_count_is_dropped(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P001', '手術日': '2024/05/20', '手術回数': '-1', '身長': '160'},
        ])

        imported = SurgeryImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 1
        surgery = seeded_store.surgeries[-1]
        assert surgery.number_of_procedures is None
        assert surgery.height_cm == 160.0
        [diagnostic] = result.diagnostics_of(DiagnosticKind.VALUE_UNPARSABLE)
        assert '手術回数' in diagnostic.message

    def test_overlong_procedure_kept_without_type(self, sheet_factory, seeded_store):
        result = ImportResult()
        kind = 'コ' * 250
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P001', '手術日': '2024/05/20', '術式': '脂肪豊胸', '脂肪注入種別': kind},
        ])

        SurgeryImporter(seeded_store).import_sheet(sheet, result)

        assert seeded_store.surgeries[-1].procedure == kind
        [diagnostic] = result.diagnostics_of(DiagnosticKind.VALUE_UNPARSABLE)
        assert 'longer than 255' in diagnostic.message

    def test_unknown_category_label_is_other(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P001', '手術日': '2024/05/20', '手術カテゴリ': '鼻'},
        ])

        SurgeryImporter(seeded_store).import_sheet(sheet, result)

        assert seeded_store.surgeries[-1].surgery_category == SurgeryCategoryChoices.OTHER

    def test_category_inferred_from_surgery_type(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P001', '手術日': '2024/05/20', '術式': '裏ハムラ'},
            {'患者ID': 'P001', '手術日': '2024/06/20', '術式': '鼻尖形成'},
        ])

        SurgeryImporter(seeded_store).import_sheet(sheet, result)

        first, second = seeded_store.surgeries[-2:]
        assert first.surgery_category == SurgeryCategoryChoices.EYELID
        assert second.surgery_category is None

    def test_unknown_patient_skips_row(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.SURGERY, [
            {'患者ID': 'P999', '手術日': '2024/05/20'},
        ])

        imported = SurgeryImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 0
        assert len(seeded_store.surgeries) == 1
        [diagnostic] = result.diagnostics
        assert diagnostic.kind == DiagnosticKind.ROW_SKIPPED
        assert diagnostic.key == 'P999'
        assert 'P999' in diagnostic.message


class TestLabDataImporter:

    def test_lab_row(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.LAB_DATA, [{
            '患者ID': 'P001',
            '検査日': '2024/03/01',
            '白血球数(WBC)': 'H12.3',
            '血小板数': '0',
            'HBs抗原判定': '陰性',
            'HbA1c': '5.4',
        }])

        imported = LabDataImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 1
        [lab_data] = seeded_store.lab_data
        assert lab_data.test_date == date(2024, 3, 1)
        assert lab_data.wbc == pytest.approx(12.3)
        assert lab_data.platelet is None
        assert lab_data.hbs_antigen_result == '陰性'
        assert lab_data.hba1c == pytest.approx(5.4)
        # "0" means not reported and is not a problem
        assert result.diagnostics == []

    def test_each_row_is_a_new_panel(self, sheet_factory, seeded_store):
        result = ImportResult()
        row = {'患者ID': 'P001', '検査日': '2024/03/01', '血糖': '95'}
        sheet = sheet_factory(RecordKind.LAB_DATA, [row, dict(row)])

        LabDataImporter(seeded_store).import_sheet(sheet, result)

        assert len(seeded_store.lab_data) == 2

    def test_unreadable_lab_value(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.LAB_DATA, [
            {'患者ID': 'P001', '検査日': '2024/03/01', 'MCV': '溶血'},
        ])

        LabDataImporter(seeded_store).import_sheet(sheet, result)

        [diagnostic] = result.diagnostics
        assert diagnostic.kind == DiagnosticKind.VALUE_UNPARSABLE
        assert 'MCV' in diagnostic.message
        assert seeded_store.lab_data[0].mcv is None


class TestFollowUpImporter:

    def test_follow_up_linked_to_surgery(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.FOLLOW_UP, [{
            '患者ID': 'P001',
            '手術日': '2024/03/15',
            '測定日': '2024/06/13',
            'VECTRA体積(R)': '340',
            'BreastQ': '78',
        }])

        imported = FollowUpImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 1
        [follow_up] = seeded_store.follow_ups
        assert follow_up.surgery is seeded_store.surgeries[0]
        assert follow_up.post_op_vectra_right == 340.0
        assert follow_up.timing == '3M'
        assert follow_up.retention_rate_right == pytest.approx(56.0)

    def test_sheet_timing_is_kept(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.FOLLOW_UP, [
            {'患者ID': 'P001', '手術日': '2024/03/15', '測定日': '2024/06/13', '経過時期': '3ヶ月'},
        ])

        FollowUpImporter(seeded_store).import_sheet(sheet, result)

        assert seeded_store.follow_ups[0].timing == '3ヶ月'

    def test_serial_surgery_date(self, sheet_factory, seeded_store):
        result = ImportResult()
        sheet = sheet_factory(RecordKind.FOLLOW_UP, [
            {'患者ID': 'P001', '手術日': 45366, 'フォローアップ日': '2024/03/22'},
        ])

        FollowUpImporter(seeded_store).import_sheet(sheet, result)

        assert seeded_store.follow_ups[0].timing == '1W'

    @pytest.mark.parametrize('surgery_date, reason', [
        (None, 'surgery date is empty'),
        ('来月', "cannot read surgery date '来月'"),
        ('2024/04/01', 'no surgery for patient P001 on 2024-04-01'),
    ])
    def test_unresolved_surgery_skips_row(self, sheet_factory, seeded_store, surgery_date, reason):
        result = ImportResult()
        row = {'患者ID': 'P001', '測定日': '2024/06/13'}
        if surgery_date is not None:
            row['手術日'] = surgery_date
        sheet = sheet_factory(RecordKind.FOLLOW_UP, [row])

        imported = FollowUpImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 0
        [diagnostic] = result.diagnostics
        assert diagnostic.kind == DiagnosticKind.ROW_SKIPPED
        assert reason in diagnostic.message

    def test_same_day_surgeries_are_ambiguous(self, sheet_factory, seeded_store, known_patient):
        seeded_store.create(Surgery(patient=known_patient, surgery_date=date(2024, 3, 15)))
        result = ImportResult()
        sheet = sheet_factory(RecordKind.FOLLOW_UP, [
            {'患者ID': 'P001', '手術日': '2024/03/15', '測定日': '2024/06/13'},
        ])

        imported = FollowUpImporter(seeded_store).import_sheet(sheet, result)

        assert imported == 0
        assert seeded_store.follow_ups == []
        assert '2 surgeries found' in result.diagnostics[0].message


class TestImportDocument:

    def test_sheets_imported_in_dependency_order(self, sheet_factory, document_factory):
        document = document_factory(
            sheet_factory(RecordKind.FOLLOW_UP, [
                {'患者ID': 'P001', '手術日': '2024/03/15', '測定日': '2024/06/13', 'VECTRA体積(R)': '340'},
            ]),
            sheet_factory(RecordKind.SURGERY, [
                {'患者ID': 'P001', '手術カテゴリ': '豊胸系', '術式': '脂肪豊胸', '手術日': '2024/03/15'},
            ]),
            sheet_factory(RecordKind.PATIENT, [
                {'患者ID': 'P001', '年齢': '34', '登録日': '2024/01/10'},
            ]),
        )
        store = InMemoryRecordStore()

        result = import_document(document, store)

        assert result.count_for(RecordKind.PATIENT) == 1
        assert result.count_for(RecordKind.SURGERY) == 1
        assert result.count_for(RecordKind.FOLLOW_UP) == 1
        assert result.diagnostics == []
        assert store.follow_ups[0].surgery is store.surgeries[0]
        assert store.commits == 0

    def test_missing_owners_skip_rows(self, sheet_factory, document_factory):
        document = document_factory(
            sheet_factory(RecordKind.SURGERY, [
                {'患者ID': 'P001', '手術日': '2024/03/15'},
                {'患者ID': 'P002', '手術日': '2024/03/16'},
            ]),
        )

        result = import_document(document, InMemoryRecordStore())

        assert result.count_for(RecordKind.SURGERY) == 0
        assert len(result.diagnostics_of(DiagnosticKind.ROW_SKIPPED)) == 2

    def test_unrecognized_sheet_diagnostic(self, sheet_factory, document_factory):
        document = document_factory(
            sheet_factory(RecordKind.PATIENT, [{'患者ID': 'P001'}]),
            sheet_factory(RecordKind.PATIENT, [], name='メモ', header=['メモ']),
        )

        result = import_document(document, InMemoryRecordStore())

        assert result.unrecognized_sheets == ['メモ']
        [diagnostic] = result.diagnostics_of(DiagnosticKind.SHEET_UNRECOGNIZED)
        assert diagnostic.sheet == 'メモ'
        assert result.count_for(RecordKind.PATIENT) == 1
