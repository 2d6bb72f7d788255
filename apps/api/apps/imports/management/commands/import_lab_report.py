"""
Management command to import a saved lab report text file for one patient.
"""
from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.imports.exceptions import CommitError
from apps.imports.services import run_lab_report_import


def _parse_iso_date(value):
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise CommandError(f"Invalid date '{value}', expected YYYY-MM-DD")


class Command(BaseCommand):
    help = 'Import a pasted lab report (label<TAB>value lines) for a patient'

    def add_arguments(self, parser):
        parser.add_argument('patient_id', help='Practice patient ID')
        parser.add_argument('path', help='Path to the report text file (UTF-8)')
        parser.add_argument('--test-date', required=True, help='Test date, YYYY-MM-DD')
        parser.add_argument('--surgery-date', help='Link to the surgery on this date, YYYY-MM-DD')
        parser.add_argument('--dry-run', action='store_true', help='Parse and report, write nothing')

    def handle(self, *args, **options):
        test_date = _parse_iso_date(options['test_date'])
        surgery_date = None
        if options.get('surgery_date'):
            surgery_date = _parse_iso_date(options['surgery_date'])

        try:
            with open(options['path'], encoding='utf-8-sig') as handle:
                text = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise CommandError(f"Cannot read {options['path']}: {exc}") from exc

        try:
            result = run_lab_report_import(
                options['patient_id'],
                text,
                test_date,
                surgery_date=surgery_date,
                dry_run=options['dry_run'],
            )
        except CommitError as exc:
            raise CommandError(str(exc)) from exc

        for line in result.summary_lines():
            self.stdout.write(f'  {line}')
        if options['dry_run']:
            self.stdout.write(self.style.SUCCESS('Dry run, nothing written'))
        elif result.total_imported:
            self.stdout.write(self.style.SUCCESS('Lab report imported'))
        else:
            self.stdout.write(self.style.WARNING('Lab report not imported'))
