"""
Fatal errors of the import pipeline.

Row-level problems are not exceptions; they are collected as
`Diagnostic` values on the run result (see results.py).
"""


class ImportPipelineError(Exception):
    """Base class for errors that abort an import run."""
    pass


class DocumentError(ImportPipelineError):
    """The input document (or its shared-string table) cannot be read."""
    pass


class CommitError(ImportPipelineError):
    """
    The record store failed to commit the run.

    The message is the store's own error text; nothing from the run is
    persisted.
    """
    pass


class AmbiguousSurgeryError(ImportPipelineError):
    """More than one surgery matches a (patient, surgery date) lookup."""

    def __init__(self, patient_key, surgery_date, count):
        self.patient_key = patient_key
        self.surgery_date = surgery_date
        self.count = count
        super().__init__(
            f"{count} surgeries found for patient {patient_key} on {surgery_date}"
        )
