"""
Tests for tabular document readers.
"""
import io
from datetime import datetime

import pytest

from apps.imports.documents import (
    column_letter_to_index,
    parse_delimited_text,
    read_delimited,
    read_document,
    read_workbook,
    split_delimited_line,
)
from apps.imports.exceptions import DocumentError


class TestColumnLetterToIndex:

    @pytest.mark.parametrize('letters, index', [
        ('A', 0),
        ('Z', 25),
        ('AA', 26),
        ('AH', 33),
        ('AU', 46),
        ('ab', 27),
    ])
    def test_letters(self, letters, index):
        assert column_letter_to_index(letters) == index

    @pytest.mark.parametrize('letters', ['', 'A1', '1', 'Ä', '-'])
    def test_non_letters_are_none(self, letters):
        assert column_letter_to_index(letters) is None


class TestSplitDelimitedLine:

    def test_plain_fields_trimmed(self):
        assert split_delimited_line('P001, 35 ,女性') == ['P001', '35', '女性']

    def test_quoted_comma_does_not_split(self):
        assert split_delimited_line('P001,"東京都, 港区",1,250') == ['P001', '東京都, 港区', '1', '250']

    def test_empty_fields_kept(self):
        assert split_delimited_line('a,,c,') == ['a', '', 'c', '']


class TestDelimitedText:

    def test_header_and_rows(self):
        document = parse_delimited_text('患者ID,年齢\nP001,35\n\nP002,41\n', 'patients')

        sheet = document.sheets[0]
        assert sheet.name == 'patients'
        assert sheet.header_labels() == {0: '患者ID', 1: '年齢'}
        assert [row.number for row in sheet.rows] == [2, 4]
        assert sheet.rows[1].get(0) == 'P002'

    def test_read_delimited_strips_bom(self):
        data = io.BytesIO('患者ID,年齢,登録日\nP001,35,2024/01/10\n'.encode('utf-8-sig'))

        document = read_delimited(data, name='patients.csv')

        assert document.sheets[0].name == 'patients'
        assert document.sheets[0].header_labels()[0] == '患者ID'

    def test_undecodable_text_is_document_error(self):
        data = io.BytesIO('患者ID\n'.encode('shift_jis'))

        with pytest.raises(DocumentError):
            read_delimited(data, name='patients.csv', encoding='utf-8')


class TestWorkbook:

    def test_reads_sheets_rows_and_native_dates(self, xlsx_factory):
        data = xlsx_factory({
            'Patients': (['患者ID', '年齢', '登録日'], [
                ['P001', 35, datetime(2024, 1, 10)],
                [None, None, None],
                ['P002', 41, '2024/02/01'],
            ]),
            'Memo': (['メモ'], []),
        })

        document = read_workbook(data, name='casefile.xlsx')

        assert [sheet.name for sheet in document.sheets] == ['Patients', 'Memo']
        patients = document.sheets[0]
        assert patients.header_labels() == {0: '患者ID', 1: '年齢', 2: '登録日'}
        assert [row.number for row in patients.rows] == [2, 4]
        assert patients.rows[0].get(1) == 35
        assert patients.rows[0].get(2) == datetime(2024, 1, 10)
        assert document.sheets[1].rows == []

    def test_not_a_workbook_is_document_error(self):
        with pytest.raises(DocumentError):
            read_workbook(io.BytesIO(b'not a zip file'), name='broken.xlsx')


class TestReadDocument:

    def test_unsupported_extension(self):
        with pytest.raises(DocumentError, match='Unsupported file type'):
            read_document(io.BytesIO(b'data'), name='report.pdf')

    def test_dispatches_csv(self):
        document = read_document(io.BytesIO('患者ID\nP001\n'.encode('utf-8')), name='p.csv')

        assert document.sheets[0].rows[0].get(0) == 'P001'
