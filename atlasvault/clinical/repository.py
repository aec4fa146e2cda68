# -*- coding: utf-8 -*-
"""Clinical photography — repository over the encrypted snapshot.

``AppRepository`` is the only writer of the aggregate. Each mutation changes
the in-memory ``AppDatabase`` and then saves the whole snapshot. Save
failures are logged and kept on ``last_save_error``; memory is never rolled
back, so disk may lag behind until the next successful save.

Callers serialize mutations themselves; there is no internal locking.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Set, Union
from uuid import UUID, uuid4

from ..config import settings
from ..errors import NotFound, StoreError
from ..imaging import encode_jpeg, encode_png
from ..notifications import LoggingNotificationScheduler, NotificationScheduler
from ..share import ShareService, Watermark
from ..storage.file_store import EncryptedFileStore, normalize_relative_path
from ..storage.json_store import EncryptedJSONStore
from .models import (
    AppDatabase,
    AuditEvent,
    AuditEventType,
    ConsentRecord,
    Patient,
    PhotoAsset,
    Procedure,
    Reminder,
    SurgicalCase,
    audit_label,
)

logger = logging.getLogger(__name__)

PHOTOS_PREFIX = "photos"
CONSENTS_PREFIX = "consents"
REMINDER_TITLE = "Follow-up reminder"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def photo_path(case_id: UUID, photo_id: UUID, is_before: bool) -> str:
    role = "before" if is_before else "after"
    return f"{PHOTOS_PREFIX}/{case_id}/{role}-{photo_id}.jpg.enc"


def consent_path(case_id: UUID, consent_id: UUID) -> str:
    return f"{CONSENTS_PREFIX}/{case_id}/{consent_id}.png.enc"


class AppRepository:
    def __init__(
        self,
        file_store: EncryptedFileStore | None = None,
        *,
        store: EncryptedJSONStore[AppDatabase] | None = None,
        scheduler: NotificationScheduler | None = None,
        share: ShareService | None = None,
        clock: Callable[[], datetime] | None = None,
        jpeg_quality: int | None = None,
        min_reminder_delay_sec: float | None = None,
    ) -> None:
        self.file_store = file_store or EncryptedFileStore()
        # A locked keychain must stop startup: carrying on with an empty
        # aggregate would overwrite the real snapshot on the next save.
        self.file_store.crypto.ensure_key()
        self.store = store or EncryptedJSONStore(AppDatabase, self.file_store, settings.db_filename)
        self.scheduler: NotificationScheduler = scheduler or LoggingNotificationScheduler()
        self.share = share or ShareService()
        self._now = clock or _utc_now
        self.jpeg_quality = jpeg_quality if jpeg_quality is not None else settings.jpeg_quality
        self.min_reminder_delay_sec = (
            min_reminder_delay_sec
            if min_reminder_delay_sec is not None
            else settings.min_reminder_delay_sec
        )
        if self.min_reminder_delay_sec <= 0:
            raise ValueError("min_reminder_delay_sec must be positive")
        self.last_save_error: Optional[StoreError] = None
        self._db = self.store.load(AppDatabase())

    @property
    def db(self) -> AppDatabase:
        return self._db

    def save(self) -> bool:
        try:
            self.store.save(self._db)
        except StoreError as exc:
            self.last_save_error = exc
            logger.error("Snapshot save failed, disk is behind memory: %s", exc)
            return False
        self.last_save_error = None
        return True

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def get_patient(self, patient_id: UUID) -> Optional[Patient]:
        return next((p for p in self._db.patients if p.id == patient_id), None)

    def get_case(self, case_id: UUID) -> Optional[SurgicalCase]:
        return next((c for c in self._db.cases if c.id == case_id), None)

    def list_cases(self, patient_id: UUID | None = None) -> List[SurgicalCase]:
        if patient_id is None:
            return list(self._db.cases)
        return [c for c in self._db.cases if c.patient_id == patient_id]

    # ------------------------------------------------------------------ #
    # Patients / cases
    # ------------------------------------------------------------------ #

    def create_patient(self, full_name: str, date_of_birth: date | None = None) -> Patient:
        patient = Patient(id=uuid4(), full_name=full_name, date_of_birth=date_of_birth)
        self._db.patients.append(patient)
        self.save()
        return patient

    def create_case(
        self,
        patient_id: UUID,
        title: str,
        specialty: str,
        procedure: Procedure | None = None,
    ) -> SurgicalCase:
        # patient_id is deliberately not checked against existing patients.
        scase = SurgicalCase(
            id=uuid4(),
            patient_id=patient_id,
            title=title,
            specialty=specialty,
            procedure=procedure,
            created_at=self._now(),
        )
        self._db.cases.append(scase)
        self.save()
        return scase

    # ------------------------------------------------------------------ #
    # Photos
    # ------------------------------------------------------------------ #

    def attach_photo(self, case_id: UUID, image_bytes: bytes, is_before: bool) -> Optional[PhotoAsset]:
        """
        Store a photo as the case's before or after image.

        Returns ``None`` without touching anything when the case does not
        exist. Encoding or write failures raise and leave the aggregate as it
        was. A replaced photo's blob stays on disk until
        :meth:`reclaim_orphaned_blobs` runs.
        """
        scase = self.get_case(case_id)
        if scase is None:
            logger.info("attach_photo: case %s not found, ignoring", case_id)
            return None
        data = encode_jpeg(image_bytes, quality=self.jpeg_quality)
        photo_id = uuid4()
        relative = photo_path(case_id, photo_id, is_before)
        self.file_store.write(data, relative)
        asset = PhotoAsset(id=photo_id, relative_path=relative, captured_at=self._now())
        if is_before:
            scase.before_photo = asset
        else:
            scase.after_photo = asset
        self.save()
        logger.info("Attached %s photo to case %s", "before" if is_before else "after", case_id)
        return asset

    def load_photo_data(self, asset: PhotoAsset) -> bytes:
        return self.file_store.read(asset.relative_path)

    def export_case_photo(
        self,
        case_id: UUID,
        is_before: bool,
        watermark: Watermark | None = None,
    ) -> Path:
        """
        Write a watermarked plaintext PNG of one photo for sharing.

        The file lands outside the private root and the caller owns it: delete
        it once it has been handed off.
        """
        scase = self.get_case(case_id)
        if scase is None:
            raise NotFound(f"case {case_id} not found")
        asset = scase.before_photo if is_before else scase.after_photo
        if asset is None:
            raise NotFound(f"case {case_id} has no {'before' if is_before else 'after'} photo")
        wm = watermark or Watermark(
            provider=settings.watermark_provider,
            clinic=settings.watermark_clinic,
            case_title=scase.title,
        )
        image = self.share.watermarked(self.load_photo_data(asset), wm)
        path = self.share.write_temp_png(image)
        self.record_audit(
            AuditEventType.share_export,
            case_id=case_id,
            details="before" if is_before else "after",
        )
        return path

    # ------------------------------------------------------------------ #
    # Reminders
    # ------------------------------------------------------------------ #

    def schedule_reminder(self, case_id: UUID, fire_date: datetime, message: str) -> Reminder:
        if not message or not message.strip():
            raise ValueError("reminder message must not be empty")
        fire_date = _as_utc(fire_date)
        reminder = Reminder(id=uuid4(), case_id=case_id, fire_date=fire_date, message=message)
        self._db.reminders.append(reminder)
        self.save()
        delay = max(self.min_reminder_delay_sec, (fire_date - self._now()).total_seconds())
        self.scheduler.schedule(str(reminder.id), fire_date, delay, REMINDER_TITLE, message)
        self.record_audit(
            AuditEventType.reminder_scheduled,
            case_id=case_id,
            details=fire_date.isoformat(),
        )
        return reminder

    def cancel_reminder(self, reminder_id: UUID) -> bool:
        reminder = next((r for r in self._db.reminders if r.id == reminder_id), None)
        if reminder is not None:
            self._db.reminders.remove(reminder)
        self.save()
        self.scheduler.cancel(str(reminder_id))
        self.record_audit(
            AuditEventType.reminder_cancelled,
            case_id=reminder.case_id if reminder else None,
            details=str(reminder_id),
        )
        return reminder is not None

    # ------------------------------------------------------------------ #
    # Consent
    # ------------------------------------------------------------------ #

    def save_consent(
        self,
        case_id: UUID,
        patient_name: str,
        procedure: str | None,
        signature_bytes: bytes,
    ) -> ConsentRecord:
        data = encode_png(signature_bytes)
        consent_id = uuid4()
        relative = consent_path(case_id, consent_id)
        self.file_store.write(data, relative)
        now = self._now()
        record = ConsentRecord(
            id=consent_id,
            case_id=case_id,
            patient_name=patient_name,
            procedure=procedure,
            signed_at=now,
            signature_asset=PhotoAsset(id=uuid4(), relative_path=relative, captured_at=now),
        )
        self._db.consents.append(record)
        self.save()
        self.record_audit(AuditEventType.consent_captured, case_id=case_id, details=procedure)
        return record

    # ------------------------------------------------------------------ #
    # Audit
    # ------------------------------------------------------------------ #

    def record_audit(
        self,
        event_type: Union[AuditEventType, str],
        case_id: UUID | None = None,
        details: str | None = None,
    ) -> AuditEvent:
        event_type = AuditEventType(event_type)
        event = AuditEvent(
            id=uuid4(),
            timestamp=self._now(),
            type=event_type,
            case_id=case_id,
            details=details,
        )
        self._db.audit_events.insert(0, event)
        self.save()
        logger.info("Audit: %s", audit_label(event_type))
        return event

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def _referenced_paths(self) -> Set[str]:
        refs: Set[str] = set()
        for scase in self._db.cases:
            for asset in (scase.before_photo, scase.after_photo):
                if asset is not None:
                    refs.add(normalize_relative_path(asset.relative_path))
        for consent in self._db.consents:
            refs.add(normalize_relative_path(consent.signature_asset.relative_path))
        return refs

    def reclaim_orphaned_blobs(self) -> List[str]:
        """Delete photo/signature blobs that no record references any more."""
        referenced = self._referenced_paths()
        removed: List[str] = []
        for prefix in (PHOTOS_PREFIX, CONSENTS_PREFIX):
            for logical in self.file_store.list_blobs(prefix):
                if logical in referenced:
                    continue
                if self.file_store.delete(logical):
                    removed.append(logical)
        if removed:
            logger.info("Reclaimed %d orphaned blobs", len(removed))
        return removed

    def reset(self, forget_key: bool = False) -> None:
        """
        Full store reset: every blob, record and audit event is dropped.

        The empty aggregate is saved before any blob goes, so an interrupted
        purge never leaves a snapshot pointing at a deleted blob. With
        ``forget_key`` the snapshot and the keychain entry are removed too.
        """
        self._db = AppDatabase()
        if not self.save():
            raise self.last_save_error
        if forget_key:
            self.file_store.purge()
            self.file_store.crypto.forget_key()
        else:
            self.file_store.purge(keep=(self.store.file_path,))
        logger.warning("Store reset: all clinical data removed")

    def seed_sample_case(self) -> SurgicalCase:
        patient = self.create_patient("Jane Doe")
        return self.create_case(
            patient.id,
            "Upper Blepharoplasty",
            "Oculoplastics",
            Procedure.upper_blepharoplasty,
        )
