# Generated migration for clinical app - patient, surgery, lab_data, follow_up

import uuid
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


def _float(help_text=None):
    if help_text:
        return models.FloatField(blank=True, null=True, help_text=help_text)
    return models.FloatField(blank=True, null=True)


def _char(max_length):
    return models.CharField(blank=True, max_length=max_length, null=True)


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        # Patient
        migrations.CreateModel(
            name='Patient',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('patient_id', models.CharField(max_length=64, unique=True)),
                ('name', models.CharField(blank=True, default='', max_length=255)),
                ('age', models.PositiveSmallIntegerField(default=0, validators=[django.core.validators.MaxValueValidator(150)])),
                ('gender', _char(20)),
                ('contact_info', _char(255)),
                ('notes', models.TextField(blank=True, null=True)),
                ('registered_date', models.DateField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Patient',
                'verbose_name_plural': 'Patients',
                'db_table': 'patient',
                'ordering': ['patient_id'],
            },
        ),

        # Surgery
        migrations.CreateModel(
            name='Surgery',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('surgery_date', models.DateField(blank=True, null=True)),
                ('surgery_category', models.CharField(blank=True, choices=[('breast_augmentation', '豊胸'), ('liposuction', '脂肪吸引'), ('eyelid', '目元'), ('other', 'その他')], max_length=30, null=True)),
                ('surgery_category_label', _char(100)),
                ('surgery_type', _char(100)),
                ('procedure', _char(255)),
                ('anesthesia_method', _char(100)),
                ('number_of_procedures', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('smoking_history', _char(100)),
                ('breastfeeding_history', _char(100)),
                ('height_cm', _float()),
                ('body_weight_kg', _float()),
                ('reported_bmi', _float('BMI as written in a legacy sheet; only kept when height or weight is missing')),
                ('pre_op_vectra_right', _float('VECTRA volume (cc)')),
                ('pre_op_vectra_left', _float('VECTRA volume (cc)')),
                ('nac_imf_right', _float()),
                ('nac_imf_left', _float()),
                ('nac_imf_stretch_right', _float()),
                ('nac_imf_stretch_left', _float()),
                ('skin_thickness_right', _float()),
                ('skin_thickness_left', _float()),
                ('donor_site', _char(255)),
                ('injection_volume_right', _float()),
                ('injection_volume_left', _float()),
                ('subcutaneous_right', _float()),
                ('subcutaneous_left', _float()),
                ('subglandular_right', _float()),
                ('subglandular_left', _float()),
                ('submuscular_right', _float()),
                ('submuscular_left', _float()),
                ('decollete_right', _float()),
                ('decollete_left', _float()),
                ('implant_manufacturer', _char(100)),
                ('implant_size_right', _float()),
                ('implant_size_left', _float()),
                ('implant_shape', _char(100)),
                ('insertion_plane', _char(100)),
                ('incision_site', _char(100)),
                ('liposuction_volume', _float()),
                ('liposuction_device', _char(100)),
                ('notes', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='surgeries', to='clinical.patient')),
            ],
            options={
                'verbose_name': 'Surgery',
                'verbose_name_plural': 'Surgeries',
                'db_table': 'surgery',
                'ordering': ['-surgery_date', 'created_at'],
                'indexes': [models.Index(fields=['patient', 'surgery_date'], name='idx_surgery_patient_date')],
            },
        ),

        # LabData
        migrations.CreateModel(
            name='LabData',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('test_date', models.DateField(blank=True, null=True)),
                ('wbc', _float()),
                ('rbc', _float()),
                ('hb', _float()),
                ('hematocrit', _float()),
                ('mcv', _float()),
                ('mch', _float()),
                ('mchc', _float()),
                ('platelet', _float()),
                ('prothrombin_time', _float()),
                ('pt_time', _float()),
                ('pt_control', _float()),
                ('pt_activity', _float()),
                ('pt_inr', _float()),
                ('aptt', _float()),
                ('total_protein', _float()),
                ('uric_acid', _float()),
                ('un', _float()),
                ('creatinine', _float()),
                ('total_cholesterol', _float()),
                ('triglyceride', _float()),
                ('glucose', _float()),
                ('fasting_blood_sugar', _float()),
                ('hba1c', _float()),
                ('total_bilirubin', _float()),
                ('direct_bilirubin', _float()),
                ('indirect_bilirubin', _float()),
                ('ast', _float()),
                ('alt', _float()),
                ('gamma_gtp', _float()),
                ('alp', _float()),
                ('ldh', _float()),
                ('sodium', _float()),
                ('potassium', _float()),
                ('chloride', _float()),
                ('iron', _float()),
                ('hbs_antigen_result', _char(50)),
                ('hbs_antigen_value', _float()),
                ('hbs_antibody_result', _char(50)),
                ('hbs_antibody_value', _char(50)),
                ('hcv_antibody_result', _char(50)),
                ('hcv_antibody_index', _float()),
                ('hcv_antibody_unit', _char(50)),
                ('hiv_result', _char(50)),
                ('rpr_result', _char(50)),
                ('syphilis_tp_result', _char(50)),
                ('blood_type_abo', _char(10)),
                ('blood_type_rh', _char(10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lab_data', to='clinical.patient')),
                ('surgery', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='lab_data', to='clinical.surgery')),
            ],
            options={
                'verbose_name': 'Lab Data',
                'verbose_name_plural': 'Lab Data',
                'db_table': 'lab_data',
                'ordering': ['-test_date', 'created_at'],
            },
        ),

        # FollowUp
        migrations.CreateModel(
            name='FollowUp',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('follow_up_date', models.DateField(blank=True, null=True)),
                ('measurement_date', models.DateField(blank=True, null=True)),
                ('timing', _char(50)),
                ('post_op_vectra_right', _float('VECTRA volume (cc)')),
                ('post_op_vectra_left', _float('VECTRA volume (cc)')),
                ('body_weight_kg', _float()),
                ('breast_q_score', _float()),
                ('smoking_status', _char(100)),
                ('alcohol_consumption', _char(100)),
                ('o2_capsule', _char(100)),
                ('notes', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('surgery', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='follow_ups', to='clinical.surgery')),
            ],
            options={
                'verbose_name': 'Follow-up',
                'verbose_name_plural': 'Follow-ups',
                'db_table': 'follow_up',
                'ordering': ['surgery', 'measurement_date', 'created_at'],
            },
        ),
    ]
