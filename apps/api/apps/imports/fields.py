"""
Field Mapper: human-language labels -> canonical record fields.

Two sources of labels are supported:

- Lab-report paste lines ("白血球数", "HBs抗原/CLIA 判定", ...) from the
  laboratory's printed reports.
- Spreadsheet/CSV column headers ("手術日", "VECTRA術前(R)", ...) from the
  practice's own workbook layout.

Each source has two disjoint tables, one for string-valued fields and one
for value fields (numbers and dates). Lookup order is fixed:

    1. string table, exact match
    2. string table, longest key contained in the label
    3. value table, exact match
    4. value table, longest key contained in the label

so a categorical result label ("陰性"/"陽性" values) is never read as a
number.

Canonical field names are validated against the Django models when the
registry for a record kind is first built (see `get_field_registry`).
"""
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, Mapping, Optional

from django.core.exceptions import FieldDoesNotExist, ImproperlyConfigured
from django.db import models

from apps.clinical.models import FollowUp, LabData, Patient, Surgery
from apps.imports import normalizers
from apps.imports.results import RecordKind


class ValueKind(str, Enum):
    """How a raw cell or line value is normalized before it is stored."""
    STRING = 'string'
    NUMBER = 'number'
    LAB_NUMBER = 'lab_number'
    INTEGER = 'integer'
    DATE = 'date'


@dataclass(frozen=True)
class FieldMapping:
    field: str
    kind: ValueKind


# ============================================================================
# Lab-report paste tables
# ============================================================================

LAB_NUMERIC_LABELS = {
    # Hematology
    '白血球数': 'wbc', 'WBC': 'wbc',
    '赤血球数': 'rbc', 'RBC': 'rbc',
    '血色素量': 'hb', 'Hb': 'hb',
    'ヘマトクリット': 'hematocrit', 'Ht': 'hematocrit',
    'MCV': 'mcv', 'MCH': 'mch', 'MCHC': 'mchc',
    '血小板数': 'platelet',

    # Coagulation
    'APTT': 'aptt',
    'プロトロンビン時間': 'prothrombin_time',
    'PT時間': 'pt_time',
    '対照': 'pt_control',
    'PT活性値': 'pt_activity',
    'PT-INR': 'pt_inr',

    # Biochemistry
    '総蛋白': 'total_protein', 'TP': 'total_protein',
    'AST': 'ast', 'GOT': 'ast',
    'ALT': 'alt', 'GPT': 'alt',
    'LD': 'ldh', 'LD/IFCC': 'ldh', 'LDH': 'ldh',
    'ALP': 'alp', 'ALP/IFCC': 'alp',
    'γ-GT': 'gamma_gtp', 'γ-GTP': 'gamma_gtp',

    # Bilirubin
    '総ビリルビン': 'total_bilirubin',
    '直接ビリルビン': 'direct_bilirubin',
    'I-BIL': 'indirect_bilirubin',
    '間接ビリルビン': 'indirect_bilirubin',

    # Renal
    'クレアチニン': 'creatinine', 'CREA': 'creatinine',
    '尿素窒素': 'un', 'UN': 'un',
    '尿酸': 'uric_acid', 'UA': 'uric_acid',

    # Lipids
    '総コレステロール': 'total_cholesterol',
    '総コレステロ-ル': 'total_cholesterol',
    '中性脂肪': 'triglyceride', 'TG': 'triglyceride',

    # Electrolytes
    'ナトリウム': 'sodium', 'Na': 'sodium',
    'カリウム': 'potassium', 'K': 'potassium',
    'クロール': 'chloride', 'Cl': 'chloride',
    '鉄': 'iron', 'Fe': 'iron',

    # Glucose
    '血糖': 'glucose',
    '血糖(空腹時)': 'glucose',
    '空腹時血糖': 'fasting_blood_sugar',
    'HbA1c(NGSP)': 'hba1c',
    'HbA1c': 'hba1c',

    # Infectious disease, quantitative
    'HBs抗原/CLIA 定量値': 'hbs_antigen_value',
    'HCV抗体 3rd インデックス': 'hcv_antibody_index',
}

LAB_STRING_LABELS = {
    'RPR法 定性': 'rpr_result',
    '梅毒TP抗体定性': 'syphilis_tp_result',
    '血液型 ABO式': 'blood_type_abo',
    '血液型 Rh(D)式': 'blood_type_rh',
    'HBs抗原/CLIA 判定': 'hbs_antigen_result',
    'HBs抗体/CLIA 判定': 'hbs_antibody_result',
    'HBs抗体/CLIA 定量値': 'hbs_antibody_value',
    'HCV抗体 3rd 判定': 'hcv_antibody_result',
    'HCV抗体 3rd ユニット': 'hcv_antibody_unit',
    'HIV抗原・抗体同時定性': 'hiv_result',
}


# ============================================================================
# Spreadsheet header tables
# ============================================================================

SHEET_STRING_LABELS = {
    # Patient
    '患者ID': 'patient_id',
    '氏名': 'name',
    '性別': 'gender',
    '連絡先': 'contact_info',
    '備考': 'notes',

    # Surgery
    '手術カテゴリ': 'surgery_category_label',
    '術式': 'surgery_type',
    '脂肪注入種別': 'procedure',
    '麻酔方法': 'anesthesia_method',
    'インプラントメーカー': 'implant_manufacturer',
    'インプラント製造元': 'implant_manufacturer',
    'インプラント形状': 'implant_shape',
    '挿入位置': 'insertion_plane',
    '切開位置': 'incision_site',
    '喫煙歴': 'smoking_history',
    '授乳歴': 'breastfeeding_history',
    '採取部位': 'donor_site',
    '吸引機器': 'liposuction_device',

    # Lab data, categorical results
    'HBs抗原判定': 'hbs_antigen_result',
    'HBs抗体判定': 'hbs_antibody_result',
    'HBs抗体定量値': 'hbs_antibody_value',
    '血液型 ABO式': 'blood_type_abo',
    '血液型 Rh(D)式': 'blood_type_rh',
    'RPR法 定性': 'rpr_result',
    '梅毒TP抗体定性': 'syphilis_tp_result',
    'HCV抗体判定': 'hcv_antibody_result',
    'HCV抗体ユニット': 'hcv_antibody_unit',
    'HIV抗原・抗体同時定性': 'hiv_result',

    # Follow-up
    '経過時期': 'timing',
    '喫煙状況': 'smoking_status',
    '飲酒状況': 'alcohol_consumption',
    'O2カプセル': 'o2_capsule',
}

_N = ValueKind.NUMBER
_LAB = ValueKind.LAB_NUMBER

SHEET_VALUE_LABELS = {
    # Patient
    '年齢': FieldMapping('age', ValueKind.INTEGER),
    '登録日': FieldMapping('registered_date', ValueKind.DATE),

    # Surgery
    '手術日': FieldMapping('surgery_date', ValueKind.DATE),
    '手術回数': FieldMapping('number_of_procedures', ValueKind.INTEGER),
    'BMI': FieldMapping('reported_bmi', _N),
    '身長': FieldMapping('height_cm', _N),
    '体重': FieldMapping('body_weight_kg', _N),
    'VECTRA術前(R)': FieldMapping('pre_op_vectra_right', _N),
    'VECTRA術前(L)': FieldMapping('pre_op_vectra_left', _N),
    'NAC-IMF(R)': FieldMapping('nac_imf_right', _N),
    'NAC-IMF(L)': FieldMapping('nac_imf_left', _N),
    'NAC-IMFon stretch(R)': FieldMapping('nac_imf_stretch_right', _N),
    'NAC-IMFon stretch(L)': FieldMapping('nac_imf_stretch_left', _N),
    '皮膚厚(R)': FieldMapping('skin_thickness_right', _N),
    '皮膚厚(L)': FieldMapping('skin_thickness_left', _N),
    '注入量(R)': FieldMapping('injection_volume_right', _N),
    '注入量(L)': FieldMapping('injection_volume_left', _N),
    '皮下(R)': FieldMapping('subcutaneous_right', _N),
    '皮下(L)': FieldMapping('subcutaneous_left', _N),
    '乳腺下(R)': FieldMapping('subglandular_right', _N),
    '乳腺下(L)': FieldMapping('subglandular_left', _N),
    '大胸筋内下(R)': FieldMapping('submuscular_right', _N),
    '大胸筋内下(L)': FieldMapping('submuscular_left', _N),
    'デコルテ(R)': FieldMapping('decollete_right', _N),
    'デコルテ(L)': FieldMapping('decollete_left', _N),
    'インプラントサイズ(R)': FieldMapping('implant_size_right', _N),
    'インプラントサイズ(L)': FieldMapping('implant_size_left', _N),
    '吸引量': FieldMapping('liposuction_volume', _N),

    # Lab data
    '検査日': FieldMapping('test_date', ValueKind.DATE),
    '白血球数(WBC)': FieldMapping('wbc', _LAB),
    '赤血球数(RBC)': FieldMapping('rbc', _LAB),
    '血色素量(Hb)': FieldMapping('hb', _LAB),
    'ヘマトクリット(Ht)': FieldMapping('hematocrit', _LAB),
    'MCV': FieldMapping('mcv', _LAB),
    'MCH': FieldMapping('mch', _LAB),
    'MCHC': FieldMapping('mchc', _LAB),
    '血小板数': FieldMapping('platelet', _LAB),
    'PT時間': FieldMapping('pt_time', _LAB),
    '対照': FieldMapping('pt_control', _LAB),
    'PT活性値': FieldMapping('pt_activity', _LAB),
    'PT-INR': FieldMapping('pt_inr', _LAB),
    'APTT': FieldMapping('aptt', _LAB),
    '総蛋白(TP)': FieldMapping('total_protein', _LAB),
    '尿酸(UA)': FieldMapping('uric_acid', _LAB),
    '尿素窒素(UN)': FieldMapping('un', _LAB),
    '間接ビリルビン': FieldMapping('indirect_bilirubin', _LAB),
    'クレアチニン(CREA)': FieldMapping('creatinine', _LAB),
    'ナトリウム(Na)': FieldMapping('sodium', _LAB),
    'カリウム(K)': FieldMapping('potassium', _LAB),
    'クロール(Cl)': FieldMapping('chloride', _LAB),
    '鉄(Fe)': FieldMapping('iron', _LAB),
    '総コレステロール': FieldMapping('total_cholesterol', _LAB),
    '中性脂肪(TG)': FieldMapping('triglyceride', _LAB),
    '総ビリルビン': FieldMapping('total_bilirubin', _LAB),
    '直接ビリルビン': FieldMapping('direct_bilirubin', _LAB),
    'AST(GOT)': FieldMapping('ast', _LAB),
    'ALT(GPT)': FieldMapping('alt', _LAB),
    'γ-GTP': FieldMapping('gamma_gtp', _LAB),
    '血糖': FieldMapping('glucose', _LAB),
    '空腹時血糖': FieldMapping('fasting_blood_sugar', _LAB),
    'HBs抗原定量値': FieldMapping('hbs_antigen_value', _LAB),
    'HbA1c': FieldMapping('hba1c', _LAB),
    'HCV抗体インデックス': FieldMapping('hcv_antibody_index', _LAB),
    'ALP': FieldMapping('alp', _LAB),
    'LDH': FieldMapping('ldh', _LAB),

    # Follow-up
    'フォローアップ日': FieldMapping('follow_up_date', ValueKind.DATE),
    '測定日': FieldMapping('measurement_date', ValueKind.DATE),
    'VECTRA体積(R)': FieldMapping('post_op_vectra_right', _N),
    'VECTRA体積(L)': FieldMapping('post_op_vectra_left', _N),
    'BreastQ': FieldMapping('breast_q_score', _N),
}

# Sheet headers are typed by hand; full-width brackets are common
_HEADER_TRANSLATION = str.maketrans({'（': '(', '）': ')', '　': ' '})


def normalize_header(label: str) -> str:
    return (label or '').translate(_HEADER_TRANSLATION).strip()


def _match_label(table: Mapping, label: str):
    """Exact match, else the value of the longest key contained in label."""
    if label in table:
        return table[label]
    candidates = [key for key in table if key and key in label]
    if not candidates:
        return None
    # max() keeps the first of equally long keys, i.e. table order
    return table[max(candidates, key=len)]


class FieldMapper:
    """
    Resolves raw labels to `FieldMapping`s.

    The default instance (`default_mapper`) uses the module-level tables;
    tests build mappers over their own tables.
    """

    def __init__(
        self,
        lab_numeric: Optional[Mapping[str, str]] = None,
        lab_string: Optional[Mapping[str, str]] = None,
        sheet_values: Optional[Mapping[str, FieldMapping]] = None,
        sheet_string: Optional[Mapping[str, str]] = None,
    ):
        self.lab_numeric = dict(LAB_NUMERIC_LABELS if lab_numeric is None else lab_numeric)
        self.lab_string = dict(LAB_STRING_LABELS if lab_string is None else lab_string)
        self.sheet_values = dict(SHEET_VALUE_LABELS if sheet_values is None else sheet_values)
        self.sheet_string = dict(SHEET_STRING_LABELS if sheet_string is None else sheet_string)

    def map_field(self, raw_label: str, is_lab_paste: bool = False) -> Optional[FieldMapping]:
        """
        Map a raw label to its canonical field and value kind.

        Returns None when nothing matches; the caller reports the label as
        unmapped.
        """
        if is_lab_paste:
            label = (raw_label or '').strip()
        else:
            label = normalize_header(raw_label)
        if not label:
            return None

        if is_lab_paste:
            field_name = _match_label(self.lab_string, label)
            if field_name is not None:
                return FieldMapping(field_name, ValueKind.STRING)
            field_name = _match_label(self.lab_numeric, label)
            if field_name is not None:
                return FieldMapping(field_name, ValueKind.LAB_NUMBER)
            return None

        field_name = _match_label(self.sheet_string, label)
        if field_name is not None:
            return FieldMapping(field_name, ValueKind.STRING)
        return _match_label(self.sheet_values, label)


default_mapper = FieldMapper()


def map_field(raw_label: str, is_lab_paste: bool = False) -> Optional[FieldMapping]:
    return default_mapper.map_field(raw_label, is_lab_paste)


# ============================================================================
# Canonical field registry
# ============================================================================

RECORD_MODELS = {
    RecordKind.PATIENT: Patient,
    RecordKind.SURGERY: Surgery,
    RecordKind.LAB_DATA: LabData,
    RecordKind.FOLLOW_UP: FollowUp,
}

# Model field classes each value kind may be stored in
_STORAGE_TYPES = {
    ValueKind.STRING: (models.CharField, models.TextField),
    ValueKind.NUMBER: (models.FloatField,),
    ValueKind.LAB_NUMBER: (models.FloatField,),
    ValueKind.INTEGER: (models.IntegerField,),
    ValueKind.DATE: (models.DateField,),
}

_NORMALIZERS = {
    ValueKind.STRING: lambda raw, epoch: normalizers.clean_string(raw),
    ValueKind.NUMBER: lambda raw, epoch: normalizers.parse_decimal(raw),
    ValueKind.LAB_NUMBER: lambda raw, epoch: normalizers.parse_lab_value(raw),
    ValueKind.INTEGER: lambda raw, epoch: normalizers.parse_integer(raw),
    ValueKind.DATE: lambda raw, epoch: normalizers.parse_date(raw, epoch=epoch),
}


@dataclass(frozen=True)
class FieldSpec:
    """A canonical field of one record kind, bound to its model field."""
    name: str
    kind: ValueKind
    model_field: models.Field

    def normalize(self, raw, epoch=None):
        """Typed value for `raw`, or None when it does not parse."""
        return _NORMALIZERS[self.kind](raw, epoch)

    def is_unreported(self, raw) -> bool:
        """True for lab values that mean "no result" rather than bad input."""
        return self.kind == ValueKind.LAB_NUMBER and normalizers.is_lab_value_unreported(raw)

    def apply(self, record, value):
        """
        Set the field on `record` once `value` passes the model field's
        checks (maximum length, value range).

        Raises ValidationError and leaves the record untouched otherwise.
        """
        value = self.model_field.clean(value, record)
        setattr(record, self.model_field.attname, value)


def _canonical_fields(mapper: FieldMapper):
    mappings = [
        FieldMapping(field_name, ValueKind.STRING)
        for field_name in list(mapper.sheet_string.values()) + list(mapper.lab_string.values())
    ]
    mappings.extend(mapper.sheet_values.values())
    mappings.extend(
        FieldMapping(field_name, ValueKind.LAB_NUMBER)
        for field_name in mapper.lab_numeric.values()
    )
    return mappings


def build_field_registry(model, mappings) -> Dict[str, FieldSpec]:
    """
    Bind field mappings to the fields of `model`.

    Mappings naming a field the model does not have are ignored (the tables
    are shared across record kinds), as are relations. A mapping whose value
    kind cannot be stored in the model field's type raises
    ImproperlyConfigured.
    """
    registry = {}
    for mapping in mappings:
        try:
            model_field = model._meta.get_field(mapping.field)
        except FieldDoesNotExist:
            continue
        if model_field.is_relation:
            # 'patient_id' is the foreign key's attname on dependent records
            continue
        if not isinstance(model_field, _STORAGE_TYPES[mapping.kind]):
            raise ImproperlyConfigured(
                f"{model.__name__}.{mapping.field} is a {type(model_field).__name__}; "
                f"cannot store {mapping.kind.value} values"
            )
        existing = registry.get(mapping.field)
        if existing is not None and existing.kind != mapping.kind:
            raise ImproperlyConfigured(
                f"{model.__name__}.{mapping.field} mapped as both "
                f"{existing.kind.value} and {mapping.kind.value}"
            )
        registry[mapping.field] = FieldSpec(mapping.field, mapping.kind, model_field)
    return registry


@lru_cache(maxsize=None)
def get_field_registry(kind: RecordKind) -> Dict[str, FieldSpec]:
    """Canonical fields of one record kind, built from the default tables."""
    return build_field_registry(RECORD_MODELS[kind], _canonical_fields(default_mapper))
