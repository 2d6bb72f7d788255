from django.contrib import admin
from .models import Patient, Surgery, LabData, FollowUp


class SurgeryInline(admin.TabularInline):
    model = Surgery
    extra = 0
    fields = ['surgery_date', 'surgery_category', 'surgery_type', 'procedure']
    show_change_link = True


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['patient_id', 'name', 'age', 'gender', 'registered_date', 'created_at']
    list_filter = ['gender']
    search_fields = ['patient_id', 'name']
    readonly_fields = ['id', 'created_at', 'updated_at']
    inlines = [SurgeryInline]


@admin.register(Surgery)
class SurgeryAdmin(admin.ModelAdmin):
    list_display = ['patient', 'surgery_date', 'surgery_category', 'surgery_type', 'procedure']
    list_filter = ['surgery_category', 'surgery_type']
    search_fields = ['patient__patient_id', 'surgery_type', 'procedure']
    readonly_fields = ['id', 'created_at', 'updated_at']
    autocomplete_fields = ['patient']
    date_hierarchy = 'surgery_date'

    fieldsets = (
        ('Surgery', {
            'fields': (
                'id', 'patient', 'surgery_date', 'surgery_category', 'surgery_category_label',
                'surgery_type', 'procedure', 'anesthesia_method', 'number_of_procedures'
            )
        }),
        ('Background', {
            'fields': (
                'smoking_history', 'breastfeeding_history', 'height_cm', 'body_weight_kg', 'reported_bmi'
            )
        }),
        ('Pre-operative', {
            'fields': (
                'pre_op_vectra_right', 'pre_op_vectra_left',
                'nac_imf_right', 'nac_imf_left', 'nac_imf_stretch_right', 'nac_imf_stretch_left',
                'skin_thickness_right', 'skin_thickness_left'
            )
        }),
        ('Fat Grafting', {
            'fields': (
                'donor_site', 'injection_volume_right', 'injection_volume_left',
                'subcutaneous_right', 'subcutaneous_left',
                'subglandular_right', 'subglandular_left',
                'submuscular_right', 'submuscular_left',
                'decollete_right', 'decollete_left'
            )
        }),
        ('Implant', {
            'fields': (
                'implant_manufacturer', 'implant_size_right', 'implant_size_left',
                'implant_shape', 'insertion_plane', 'incision_site'
            )
        }),
        ('Liposuction', {
            'fields': ('liposuction_volume', 'liposuction_device')
        }),
        ('Notes', {
            'fields': ('notes',)
        }),
        ('Audit', {
            'fields': ('created_at', 'updated_at')
        }),
    )


@admin.register(LabData)
class LabDataAdmin(admin.ModelAdmin):
    list_display = ['patient', 'test_date', 'surgery', 'created_at']
    search_fields = ['patient__patient_id']
    readonly_fields = ['id', 'created_at']
    autocomplete_fields = ['patient', 'surgery']
    date_hierarchy = 'test_date'


@admin.register(FollowUp)
class FollowUpAdmin(admin.ModelAdmin):
    list_display = ['surgery', 'follow_up_date', 'measurement_date', 'timing', 'created_at']
    list_filter = ['timing']
    search_fields = ['surgery__patient__patient_id']
    readonly_fields = ['id', 'created_at']
    autocomplete_fields = ['surgery']
