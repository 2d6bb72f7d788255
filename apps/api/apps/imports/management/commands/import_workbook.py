"""
Management command to import a workbook (.xlsx) or CSV file.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.imports.exceptions import CommitError, DocumentError
from apps.imports.services import run_document_import


class Command(BaseCommand):
    help = 'Import patients, surgeries, lab data and follow-ups from a workbook or CSV file'

    def add_arguments(self, parser):
        parser.add_argument('path', help='Path to the .xlsx or .csv file')
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Run the whole import but write nothing',
        )

    def handle(self, *args, **options):
        path = options['path']
        dry_run = options['dry_run']

        try:
            result = run_document_import(path, dry_run=dry_run)
        except (DocumentError, CommitError) as exc:
            raise CommandError(str(exc)) from exc

        heading = 'Dry run, nothing written' if dry_run else 'Import complete'
        self.stdout.write(self.style.SUCCESS(f'{heading}: {path}'))
        for line in result.summary_lines():
            self.stdout.write(f'  {line}')
        if result.diagnostics:
            self.stdout.write(
                self.style.WARNING(f'{len(result.diagnostics)} issue(s) reported')
            )
