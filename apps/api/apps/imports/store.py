"""
Record stores the import pipeline writes into.

A store is passed explicitly to every import; there is no process-wide
persistence handle. Records are handed over as unsaved (or modified) model
instances and nothing is persisted before `commit()`.

- `DjangoRecordStore` buffers writes and saves them in one
  `transaction.atomic()` block at commit.
- `InMemoryRecordStore` keeps everything in dictionaries and lists; used
  for dry runs and for tests that need no database.
"""
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from apps.clinical.models import FollowUp, LabData, Patient, Surgery
from apps.core.observability import get_sanitized_logger
from apps.imports.exceptions import AmbiguousSurgeryError, CommitError

logger = get_sanitized_logger(__name__)


class RecordStore:
    """
    Store contract used by the row importers.

    Subclasses implement lookups by natural key and buffered writes.
    """

    def find_patient(self, key: str) -> Optional[Patient]:
        raise NotImplementedError

    def find_surgery(self, patient: Patient, surgery_date) -> Optional[Surgery]:
        """
        The patient's surgery on `surgery_date`, or None.

        Raises AmbiguousSurgeryError when more than one surgery matches.
        """
        raise NotImplementedError

    def upsert(self, record):
        """Stage a record that may already exist (patients)."""
        raise NotImplementedError

    def create(self, record):
        """Stage a new record (surgeries, lab data, follow-ups)."""
        raise NotImplementedError

    def commit(self):
        """Persist everything staged; raises CommitError on failure."""
        raise NotImplementedError

    def discard(self):
        """Drop everything staged without persisting it (dry runs)."""
        raise NotImplementedError


def _same_patient(surgery, patient):
    return surgery.patient.patient_id == patient.patient_id


def _check_single(matches, patient, surgery_date):
    if len(matches) > 1:
        raise AmbiguousSurgeryError(patient.patient_id, surgery_date, len(matches))
    return matches[0] if matches else None


class InMemoryRecordStore(RecordStore):
    """
    Store backed by plain containers.

    Seed it with existing records through the constructor to simulate a
    populated database.
    """

    def __init__(self, patients=None, surgeries=None):
        self.patients = {patient.patient_id: patient for patient in (patients or [])}
        self.surgeries: List[Surgery] = list(surgeries or [])
        self.lab_data: List[LabData] = []
        self.follow_ups: List[FollowUp] = []
        self.commits = 0

    def find_patient(self, key):
        return self.patients.get(key)

    def find_surgery(self, patient, surgery_date):
        matches = [
            surgery for surgery in self.surgeries
            if _same_patient(surgery, patient) and surgery.surgery_date == surgery_date
        ]
        return _check_single(matches, patient, surgery_date)

    def upsert(self, record):
        if isinstance(record, Patient):
            self.patients[record.patient_id] = record
        else:
            self.create(record)

    def create(self, record):
        if isinstance(record, Patient):
            self.patients[record.patient_id] = record
        elif isinstance(record, Surgery):
            self.surgeries.append(record)
        elif isinstance(record, LabData):
            self.lab_data.append(record)
        elif isinstance(record, FollowUp):
            self.follow_ups.append(record)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

    def commit(self):
        self.commits += 1

    def discard(self):
        pass


class DjangoRecordStore(RecordStore):
    """
    Store backed by the Django ORM.

    Lookups see staged records first, then the database. Staged records are
    saved in staging order, so owners are saved before the records that
    reference them.
    """

    def __init__(self, using=None):
        self.using = using
        self._pending = []
        self._patients = {}
        self._staged_surgeries = []

    @property
    def pending_count(self):
        return len(self._pending)

    def _stage(self, record):
        if not any(staged is record for staged in self._pending):
            self._pending.append(record)

    def find_patient(self, key):
        patient = self._patients.get(key)
        if patient is None:
            patient = Patient.objects.using(self.using).filter(patient_id=key).first()
            if patient is not None:
                self._patients[key] = patient
        return patient

    def find_surgery(self, patient, surgery_date):
        matches = [
            surgery for surgery in self._staged_surgeries
            if _same_patient(surgery, patient) and surgery.surgery_date == surgery_date
        ]
        if not patient._state.adding:
            try:
                matches.append(
                    Surgery.objects.using(self.using).get(patient=patient, surgery_date=surgery_date)
                )
            except Surgery.DoesNotExist:
                pass
            except Surgery.MultipleObjectsReturned:
                count = Surgery.objects.using(self.using).filter(
                    patient=patient, surgery_date=surgery_date
                ).count()
                raise AmbiguousSurgeryError(patient.patient_id, surgery_date, count + len(matches))
        return _check_single(matches, patient, surgery_date)

    def upsert(self, record):
        if isinstance(record, Patient):
            self._patients[record.patient_id] = record
        self._stage(record)

    def create(self, record):
        if isinstance(record, Patient):
            self._patients[record.patient_id] = record
        elif isinstance(record, Surgery):
            self._staged_surgeries.append(record)
        self._stage(record)

    def commit(self):
        """
        Validate and save every staged record in one transaction.

        Any validation or database error rolls the whole transaction back
        and is re-raised as CommitError carrying the original message.
        """
        pending = self._pending
        try:
            with transaction.atomic(using=self.using):
                for record in pending:
                    record.full_clean()
                    record.save(using=self.using)
        except (ValidationError, DatabaseError) as exc:
            logger.error(
                'Record store commit failed',
                extra={'records_count': len(pending), 'error_type': type(exc).__name__}
            )
            raise CommitError(str(exc)) from exc
        finally:
            self.discard()

        logger.info('Record store committed', extra={'records_count': len(pending)})

    def discard(self):
        self._pending = []
        self._staged_surgeries = []
        self._patients = {}
