"""
Clinical models: patient, surgery, lab_data, follow_up.

Derived quantities (BMI, fat-graft retention rate, days after surgery) are
exposed as properties computed from stored measurements and are never
persisted.
"""
import uuid
from django.core.validators import MaxValueValidator
from django.db import models

from apps.clinical import calculations


# ============================================================================
# Enums
# ============================================================================

class SurgeryCategoryChoices(models.TextChoices):
    """Surgery category"""
    BREAST_AUGMENTATION = 'breast_augmentation', '豊胸'
    LIPOSUCTION = 'liposuction', '脂肪吸引'
    EYELID = 'eyelid', '目元'
    OTHER = 'other', 'その他'


# Practice labels for each category, as written in spreadsheets and forms
SURGERY_CATEGORY_LABELS = {
    '豊胸': SurgeryCategoryChoices.BREAST_AUGMENTATION,
    '豊胸系': SurgeryCategoryChoices.BREAST_AUGMENTATION,
    '脂肪吸引': SurgeryCategoryChoices.LIPOSUCTION,
    '目元系': SurgeryCategoryChoices.EYELID,
    '上眼瞼': SurgeryCategoryChoices.EYELID,
    '下眼瞼': SurgeryCategoryChoices.EYELID,
}

# Surgery types offered by the practice and the category they belong to
SURGERY_TYPES = {
    '脂肪豊胸': SurgeryCategoryChoices.BREAST_AUGMENTATION,
    '脂肪注入': SurgeryCategoryChoices.BREAST_AUGMENTATION,
    'シリコンバッグ豊胸': SurgeryCategoryChoices.BREAST_AUGMENTATION,
    '脂肪吸引（上腕）': SurgeryCategoryChoices.LIPOSUCTION,
    '脂肪吸引（体幹）': SurgeryCategoryChoices.LIPOSUCTION,
    '脂肪吸引（大腿）': SurgeryCategoryChoices.LIPOSUCTION,
    '脂肪吸引（下腿）': SurgeryCategoryChoices.LIPOSUCTION,
    '二重埋没': SurgeryCategoryChoices.EYELID,
    '眉毛下皮膚切除': SurgeryCategoryChoices.EYELID,
    '二重切開': SurgeryCategoryChoices.EYELID,
    '脱脂': SurgeryCategoryChoices.EYELID,
    '裏ハムラ': SurgeryCategoryChoices.EYELID,
    '切開ハムラ': SurgeryCategoryChoices.EYELID,
}

FAT_GRAFT_TYPES = {'脂肪豊胸', '脂肪注入'}


def resolve_surgery_category(label, surgery_type=None):
    """
    Map a practice category label to SurgeryCategoryChoices.

    Accepts either the practice label ('豊胸系') or the enum value
    ('breast_augmentation'). An empty label falls back to the category of a
    known `surgery_type`, else None. Any other label is OTHER.
    """
    if not label:
        return SURGERY_TYPES.get((surgery_type or '').strip())
    label = label.strip()
    if label in SurgeryCategoryChoices.values:
        return SurgeryCategoryChoices(label)
    return SURGERY_CATEGORY_LABELS.get(label, SurgeryCategoryChoices.OTHER)


# ============================================================================
# Models
# ============================================================================

class Patient(models.Model):
    """
    Patient registered at the practice.

    `patient_id` is the practice's own identifier and the natural key used
    by every import.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient_id = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255, blank=True, default='')
    age = models.PositiveSmallIntegerField(default=0, validators=[MaxValueValidator(150)])
    gender = models.CharField(max_length=20, blank=True, null=True)
    contact_info = models.CharField(max_length=255, blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    registered_date = models.DateField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient'
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        ordering = ['patient_id']

    def __str__(self):
        return f"{self.name or self.patient_id} ({self.patient_id})"

    def save(self, *args, **kwargs):
        if not self.name:
            self.name = f"患者{self.patient_id}"
        super().save(*args, **kwargs)


class Surgery(models.Model):
    """
    A surgery performed on a patient.

    Imports identify a surgery by (patient, surgery_date); two surgeries on
    the same day for one patient cannot be told apart by that key.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='surgeries')

    surgery_date = models.DateField(blank=True, null=True)
    surgery_category = models.CharField(
        max_length=30,
        choices=SurgeryCategoryChoices.choices,
        blank=True,
        null=True
    )
    surgery_category_label = models.CharField(max_length=100, blank=True, null=True)
    surgery_type = models.CharField(max_length=100, blank=True, null=True)
    procedure = models.CharField(max_length=255, blank=True, null=True)
    anesthesia_method = models.CharField(max_length=100, blank=True, null=True)
    number_of_procedures = models.PositiveSmallIntegerField(blank=True, null=True)

    # Background
    smoking_history = models.CharField(max_length=100, blank=True, null=True)
    breastfeeding_history = models.CharField(max_length=100, blank=True, null=True)
    height_cm = models.FloatField(blank=True, null=True)
    body_weight_kg = models.FloatField(blank=True, null=True)
    reported_bmi = models.FloatField(
        blank=True,
        null=True,
        help_text="BMI as written in a legacy sheet; only kept when height or weight is missing"
    )

    # Pre-operative measurements
    pre_op_vectra_right = models.FloatField(blank=True, null=True, help_text="VECTRA volume (cc)")
    pre_op_vectra_left = models.FloatField(blank=True, null=True, help_text="VECTRA volume (cc)")
    nac_imf_right = models.FloatField(blank=True, null=True)
    nac_imf_left = models.FloatField(blank=True, null=True)
    nac_imf_stretch_right = models.FloatField(blank=True, null=True)
    nac_imf_stretch_left = models.FloatField(blank=True, null=True)
    skin_thickness_right = models.FloatField(blank=True, null=True)
    skin_thickness_left = models.FloatField(blank=True, null=True)

    # Fat grafting
    donor_site = models.CharField(max_length=255, blank=True, null=True)
    injection_volume_right = models.FloatField(blank=True, null=True)
    injection_volume_left = models.FloatField(blank=True, null=True)
    subcutaneous_right = models.FloatField(blank=True, null=True)
    subcutaneous_left = models.FloatField(blank=True, null=True)
    subglandular_right = models.FloatField(blank=True, null=True)
    subglandular_left = models.FloatField(blank=True, null=True)
    submuscular_right = models.FloatField(blank=True, null=True)
    submuscular_left = models.FloatField(blank=True, null=True)
    decollete_right = models.FloatField(blank=True, null=True)
    decollete_left = models.FloatField(blank=True, null=True)

    # Implants
    implant_manufacturer = models.CharField(max_length=100, blank=True, null=True)
    implant_size_right = models.FloatField(blank=True, null=True)
    implant_size_left = models.FloatField(blank=True, null=True)
    implant_shape = models.CharField(max_length=100, blank=True, null=True)
    insertion_plane = models.CharField(max_length=100, blank=True, null=True)
    incision_site = models.CharField(max_length=100, blank=True, null=True)

    # Liposuction
    liposuction_volume = models.FloatField(blank=True, null=True)
    liposuction_device = models.CharField(max_length=100, blank=True, null=True)

    notes = models.TextField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'surgery'
        verbose_name = 'Surgery'
        verbose_name_plural = 'Surgeries'
        ordering = ['-surgery_date', 'created_at']
        indexes = [
            models.Index(fields=['patient', 'surgery_date'], name='idx_surgery_patient_date'),
        ]

    def __str__(self):
        return f"{self.surgery_type or self.surgery_category or 'Surgery'} {self.surgery_date} ({self.patient_id})"

    @property
    def bmi(self):
        """BMI computed from height and weight, else the legacy reported value."""
        computed = calculations.compute_bmi(self.height_cm, self.body_weight_kg)
        if computed is not None:
            return computed
        return self.reported_bmi

    @property
    def is_fat_graft(self):
        """True for fat-injection breast augmentation."""
        return (
            self.surgery_category == SurgeryCategoryChoices.BREAST_AUGMENTATION
            and self.surgery_type in FAT_GRAFT_TYPES
        )


class LabData(models.Model):
    """
    One panel of laboratory results for a patient.

    Imports never deduplicate lab data; every imported row is a new
    observation.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='lab_data')
    surgery = models.ForeignKey(
        Surgery,
        on_delete=models.SET_NULL,
        related_name='lab_data',
        blank=True,
        null=True
    )
    test_date = models.DateField(blank=True, null=True)

    # Hematology
    wbc = models.FloatField(blank=True, null=True)
    rbc = models.FloatField(blank=True, null=True)
    hb = models.FloatField(blank=True, null=True)
    hematocrit = models.FloatField(blank=True, null=True)
    mcv = models.FloatField(blank=True, null=True)
    mch = models.FloatField(blank=True, null=True)
    mchc = models.FloatField(blank=True, null=True)
    platelet = models.FloatField(blank=True, null=True)

    # Coagulation
    prothrombin_time = models.FloatField(blank=True, null=True)
    pt_time = models.FloatField(blank=True, null=True)
    pt_control = models.FloatField(blank=True, null=True)
    pt_activity = models.FloatField(blank=True, null=True)
    pt_inr = models.FloatField(blank=True, null=True)
    aptt = models.FloatField(blank=True, null=True)

    # Biochemistry
    total_protein = models.FloatField(blank=True, null=True)
    uric_acid = models.FloatField(blank=True, null=True)
    un = models.FloatField(blank=True, null=True)
    creatinine = models.FloatField(blank=True, null=True)
    total_cholesterol = models.FloatField(blank=True, null=True)
    triglyceride = models.FloatField(blank=True, null=True)
    glucose = models.FloatField(blank=True, null=True)
    fasting_blood_sugar = models.FloatField(blank=True, null=True)
    hba1c = models.FloatField(blank=True, null=True)

    # Liver function
    total_bilirubin = models.FloatField(blank=True, null=True)
    direct_bilirubin = models.FloatField(blank=True, null=True)
    indirect_bilirubin = models.FloatField(blank=True, null=True)
    ast = models.FloatField(blank=True, null=True)
    alt = models.FloatField(blank=True, null=True)
    gamma_gtp = models.FloatField(blank=True, null=True)
    alp = models.FloatField(blank=True, null=True)
    ldh = models.FloatField(blank=True, null=True)

    # Electrolytes
    sodium = models.FloatField(blank=True, null=True)
    potassium = models.FloatField(blank=True, null=True)
    chloride = models.FloatField(blank=True, null=True)
    iron = models.FloatField(blank=True, null=True)

    # Infectious disease / blood type
    hbs_antigen_result = models.CharField(max_length=50, blank=True, null=True)
    hbs_antigen_value = models.FloatField(blank=True, null=True)
    hbs_antibody_result = models.CharField(max_length=50, blank=True, null=True)
    hbs_antibody_value = models.CharField(max_length=50, blank=True, null=True)
    hcv_antibody_result = models.CharField(max_length=50, blank=True, null=True)
    hcv_antibody_index = models.FloatField(blank=True, null=True)
    hcv_antibody_unit = models.CharField(max_length=50, blank=True, null=True)
    hiv_result = models.CharField(max_length=50, blank=True, null=True)
    rpr_result = models.CharField(max_length=50, blank=True, null=True)
    syphilis_tp_result = models.CharField(max_length=50, blank=True, null=True)
    blood_type_abo = models.CharField(max_length=10, blank=True, null=True)
    blood_type_rh = models.CharField(max_length=10, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'lab_data'
        verbose_name = 'Lab Data'
        verbose_name_plural = 'Lab Data'
        ordering = ['-test_date', 'created_at']

    def __str__(self):
        return f"Lab {self.test_date} ({self.patient_id})"


class FollowUp(models.Model):
    """
    Post-operative follow-up measurement for a surgery.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    surgery = models.ForeignKey(Surgery, on_delete=models.CASCADE, related_name='follow_ups')

    follow_up_date = models.DateField(blank=True, null=True)
    measurement_date = models.DateField(blank=True, null=True)
    timing = models.CharField(max_length=50, blank=True, null=True)

    post_op_vectra_right = models.FloatField(blank=True, null=True, help_text="VECTRA volume (cc)")
    post_op_vectra_left = models.FloatField(blank=True, null=True, help_text="VECTRA volume (cc)")
    body_weight_kg = models.FloatField(blank=True, null=True)
    breast_q_score = models.FloatField(blank=True, null=True)
    smoking_status = models.CharField(max_length=100, blank=True, null=True)
    alcohol_consumption = models.CharField(max_length=100, blank=True, null=True)
    o2_capsule = models.CharField(max_length=100, blank=True, null=True)
    notes = models.TextField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'follow_up'
        verbose_name = 'Follow-up'
        verbose_name_plural = 'Follow-ups'
        ordering = ['surgery', 'measurement_date', 'created_at']

    def __str__(self):
        return f"Follow-up {self.timing or self.measurement_date} ({self.surgery_id})"

    @property
    def observed_date(self):
        return self.measurement_date or self.follow_up_date

    @property
    def days_after_surgery(self):
        if self.observed_date is None or self.surgery.surgery_date is None:
            return None
        return (self.observed_date - self.surgery.surgery_date).days

    @property
    def retention_rate_right(self):
        return calculations.compute_retention_rate(
            self.post_op_vectra_right,
            self.surgery.pre_op_vectra_right,
            self.surgery.injection_volume_right,
        )

    @property
    def retention_rate_left(self):
        return calculations.compute_retention_rate(
            self.post_op_vectra_left,
            self.surgery.pre_op_vectra_left,
            self.surgery.injection_volume_left,
        )
