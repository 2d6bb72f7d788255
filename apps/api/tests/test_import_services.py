"""
Tests for import runs against the database store.

Covers commit, rollback on store failure, dry runs, CSV input, lab reports
and run metrics.
"""
import io
from datetime import date
from unittest import mock

import pytest
from django.db import DatabaseError
from prometheus_client import REGISTRY

from apps.clinical.models import FollowUp, LabData, Patient, Surgery, SurgeryCategoryChoices
from apps.imports.exceptions import CommitError, DocumentError
from apps.imports.results import DiagnosticKind, RecordKind
from apps.imports.services import run_document_import, run_lab_report_import
from apps.imports.store import DjangoRecordStore


def _runs(source, result):
    return REGISTRY.get_sample_value('import_runs_total', {'source': source, 'result': result}) or 0


PATIENT_ROW = {'患者ID': 'P001', '年齢': 34, '性別': '女性', '登録日': '2024/01/10'}
SURGERY_ROW = {
    '患者ID': 'P001',
    '手術カテゴリ': '豊胸系',
    '術式': '脂肪豊胸',
    '手術日': '2024/03/15',
    'VECTRA術前(R)': 200,
    '注入量(R)': 250,
}
FOLLOW_UP_ROW = {
    '患者ID': 'P001',
    '手術日': '2024/03/15',
    '測定日': '2024/06/13',
    'VECTRA体積(R)': 340,
}


@pytest.mark.django_db
class TestWorkbookImport:

    def test_commit_persists_all_kinds(self, practice_workbook):
        data = practice_workbook(
            follow_ups=[FOLLOW_UP_ROW],
            surgeries=[SURGERY_ROW],
            patients=[PATIENT_ROW],
            lab_data=[{'患者ID': 'P001', '検査日': '2024/03/01', '白血球数(WBC)': 6.5}],
        )

        result = run_document_import(data, name='casefile.xlsx')

        assert result.counts == {
            RecordKind.PATIENT: 1,
            RecordKind.SURGERY: 1,
            RecordKind.LAB_DATA: 1,
            RecordKind.FOLLOW_UP: 1,
        }
        assert result.diagnostics == []
        patient = Patient.objects.get(patient_id='P001')
        assert patient.name == '患者P001'
        surgery = Surgery.objects.get(patient=patient)
        assert surgery.surgery_category == SurgeryCategoryChoices.BREAST_AUGMENTATION
        follow_up = FollowUp.objects.get(surgery=surgery)
        assert follow_up.timing == '3M'
        assert follow_up.retention_rate_right == pytest.approx(56.0)
        assert LabData.objects.get(patient=patient).wbc == 6.5

    def test_existing_patient_is_updated(self, practice_workbook, patient):
        data = practice_workbook(patients=[{'患者ID': 'P001', '年齢': 35, '備考': '再来'}])

        run_document_import(data, name='casefile.xlsx')

        assert Patient.objects.count() == 1
        patient.refresh_from_db()
        assert patient.age == 35
        assert patient.notes == '再来'
        assert patient.gender == '女性'

    def test_follow_up_for_stored_surgery(self, practice_workbook, fat_graft_surgery):
        data = practice_workbook(follow_ups=[FOLLOW_UP_ROW])

        result = run_document_import(data, name='casefile.xlsx')

        assert result.count_for(RecordKind.FOLLOW_UP) == 1
        follow_up = FollowUp.objects.get()
        assert follow_up.surgery == fat_graft_surgery
        assert follow_up.retention_rate_right == pytest.approx(56.0)

    def test_same_day_stored_surgeries_skip_follow_up(self, practice_workbook, fat_graft_surgery):
        Surgery.objects.create(patient=fat_graft_surgery.patient, surgery_date=date(2024, 3, 15))
        data = practice_workbook(follow_ups=[FOLLOW_UP_ROW])

        result = run_document_import(data, name='casefile.xlsx')

        assert FollowUp.objects.count() == 0
        [diagnostic] = result.diagnostics_of(DiagnosticKind.ROW_SKIPPED)
        assert '2 surgeries found' in diagnostic.message

    def test_value_out_of_range_only_drops_that_field(self, practice_workbook):
        rows = [{'患者ID': f'P{i:03d}', '年齢': 30, '性別': '女性'} for i in range(1, 11)]
        rows[4] = {'患者ID': 'P005', '年齢': 200, '性別': '女性' * 12}
        data = practice_workbook(patients=rows)

        result = run_document_import(data, name='casefile.xlsx')

        assert result.count_for(RecordKind.PATIENT) == 10
        assert Patient.objects.count() == 10
        patient = Patient.objects.get(patient_id='P005')
        assert patient.age == 0
        assert patient.gender is None
        diagnostics = result.diagnostics_of(DiagnosticKind.VALUE_UNPARSABLE)
        assert [d.row for d in diagnostics] == [6, 6]
        assert {d.key for d in diagnostics} == {'P005'}

    def test_database_error_becomes_commit_error(self, practice_workbook):
        data = practice_workbook(patients=[PATIENT_ROW])
        before = _runs('workbook', 'commit_error')

        with mock.patch.object(Patient, 'save', side_effect=DatabaseError('disk I/O error')):
            with pytest.raises(CommitError, match='disk I/O error'):
                run_document_import(data, name='casefile.xlsx')

        assert Patient.objects.count() == 0
        assert _runs('workbook', 'commit_error') == before + 1

    def test_unreadable_workbook(self):
        before = _runs('workbook', 'document_error')

        with pytest.raises(DocumentError):
            run_document_import(io.BytesIO(b'PK not really a workbook'), name='casefile.xlsx')

        assert _runs('workbook', 'document_error') == before + 1

    def test_dry_run_writes_nothing(self, practice_workbook):
        data = practice_workbook(
            patients=[PATIENT_ROW],
            surgeries=[SURGERY_ROW],
            follow_ups=[FOLLOW_UP_ROW],
        )

        result = run_document_import(data, name='casefile.xlsx', dry_run=True)

        assert result.dry_run is True
        assert result.count_for(RecordKind.FOLLOW_UP) == 1
        assert Patient.objects.count() == 0
        assert Surgery.objects.count() == 0
        assert FollowUp.objects.count() == 0

    def test_dry_run_leaves_stored_patient_unchanged(self, practice_workbook, patient):
        data = practice_workbook(patients=[{'患者ID': 'P001', '年齢': 50}])

        run_document_import(data, name='casefile.xlsx', dry_run=True)

        patient.refresh_from_db()
        assert patient.age == 34

    def test_success_metric(self, practice_workbook):
        data = practice_workbook(patients=[PATIENT_ROW])
        before = _runs('workbook', 'success')

        run_document_import(data, name='casefile.xlsx')

        assert _runs('workbook', 'success') == before + 1

    def test_run_duration_observed(self, practice_workbook):
        data = practice_workbook(patients=[PATIENT_ROW])
        before = REGISTRY.get_sample_value('import_run_duration_seconds_count') or 0

        run_document_import(data, name='casefile.xlsx')

        assert REGISTRY.get_sample_value('import_run_duration_seconds_count') == before + 1


@pytest.mark.django_db
class TestCsvImport:

    def test_csv_patients(self):
        text = '患者ID,年齢,性別,連絡先,登録日,備考\nP001,34,女性,,2024/01/10,\n,40,,,,\nP002,41,女性,,2024/02/01,"紹介, 知人"\n'
        before = _runs('csv', 'success')

        result = run_document_import(io.BytesIO(text.encode('utf-8')), name='patients.csv')

        assert result.count_for(RecordKind.PATIENT) == 2
        assert [d.row for d in result.diagnostics] == [3]
        assert Patient.objects.get(patient_id='P002').notes == '紹介, 知人'
        assert _runs('csv', 'success') == before + 1

    def test_unsupported_extension(self):
        with pytest.raises(DocumentError, match='Unsupported file type'):
            run_document_import(io.BytesIO(b'x'), name='patients.txt')


@pytest.mark.django_db
class TestLabReportImport:

    REPORT = '白血球数\t6.5\nHBs抗原/CLIA\t\n  判定\t陰性\n  定量値\t0.00\n'

    def test_lab_report_linked_to_surgery(self, fat_graft_surgery):
        result = run_lab_report_import(
            'P001', self.REPORT, date(2024, 3, 1), surgery_date=date(2024, 3, 15)
        )

        assert result.count_for(RecordKind.LAB_DATA) == 1
        lab_data = LabData.objects.get()
        assert lab_data.surgery == fat_graft_surgery
        assert lab_data.patient == fat_graft_surgery.patient
        assert lab_data.hbs_antigen_result == '陰性'
        assert lab_data.hbs_antigen_value == 0.0

    def test_unknown_patient_writes_nothing(self, db):
        result = run_lab_report_import('P404', self.REPORT, date(2024, 3, 1))

        assert result.count_for(RecordKind.LAB_DATA) == 0
        assert LabData.objects.count() == 0

    def test_dry_run(self, patient):
        result = run_lab_report_import('P001', self.REPORT, date(2024, 3, 1), dry_run=True)

        assert result.count_for(RecordKind.LAB_DATA) == 1
        assert LabData.objects.count() == 0


@pytest.mark.django_db
class TestDjangoRecordStore:

    def test_staged_records_visible_before_commit(self):
        store = DjangoRecordStore()
        patient = Patient(patient_id='P010')
        store.upsert(patient)
        surgery = Surgery(patient=patient, surgery_date=date(2024, 3, 15))
        store.create(surgery)

        assert store.find_patient('P010') is patient
        assert store.find_surgery(patient, date(2024, 3, 15)) is surgery
        assert store.pending_count == 2
        assert Patient.objects.count() == 0

        store.commit()

        assert store.pending_count == 0
        assert Surgery.objects.get().patient.patient_id == 'P010'

    def test_discard(self):
        store = DjangoRecordStore()
        store.upsert(Patient(patient_id='P010'))

        store.discard()
        store.commit()

        assert store.find_patient('P010') is None
        assert Patient.objects.count() == 0
