# -*- coding: utf-8 -*-

from __future__ import annotations

import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock
from uuid import uuid4

from atlasvault.clinical.models import AuditEventType, Procedure
from atlasvault.errors import EncodeError, NotFound, StoreIOError
from atlasvault.imaging import image_size
from atlasvault.share import ShareService

from helpers import MemoryKeyring, RecordingScheduler, make_jpeg, make_png, make_repository

_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class RepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = Path(tempfile.mkdtemp(prefix="atlasvault-test-"))
        self.root = self._tmp / "store"
        self.backend = MemoryKeyring()
        self.scheduler = RecordingScheduler()
        self.repo = self._open()

    def tearDown(self) -> None:
        shutil.rmtree(self._tmp, ignore_errors=True)

    def _open(self, **kwargs):
        kwargs.setdefault("scheduler", self.scheduler)
        kwargs.setdefault("share", ShareService(export_dir=self._tmp / "exports"))
        return make_repository(self.root, self.backend, **kwargs)


class TestPatientsAndCases(RepositoryTestCase):
    def test_create_patient_and_case(self) -> None:
        patient = self.repo.create_patient("Jane Doe", None)
        scase = self.repo.create_case(patient.id, "Upper Blepharoplasty", "Oculoplastics")
        self.assertIsNone(scase.before_photo)
        self.assertIsNone(scase.after_photo)
        self.assertIsNone(scase.procedure)
        self.assertEqual(self.repo.get_case(scase.id), scase)
        self.assertEqual(self.repo.list_cases(patient.id), [scase])
        self.assertNotEqual(self.repo.create_patient("Jane Doe").id, patient.id)

    def test_case_for_unknown_patient_is_allowed(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics", Procedure.brow_lift)
        self.assertEqual(self.repo.get_case(scase.id).procedure, Procedure.brow_lift)

    def test_every_mutation_is_persisted(self) -> None:
        patient = self.repo.create_patient("Jane Doe")
        scase = self.repo.create_case(patient.id, "Ptosis Repair", "Oculoplastics")
        self.repo.record_audit(AuditEventType.screen_capture_detected, scase.id)
        reopened = self._open()
        self.assertEqual(reopened.db, self.repo.db)


class TestPhotos(RepositoryTestCase):
    def test_before_photo_scenario(self) -> None:
        patient = self.repo.create_patient("Jane Doe")
        scase = self.repo.create_case(patient.id, "Upper Blepharoplasty", "Oculoplastics")
        asset = self.repo.attach_photo(scase.id, make_jpeg(1024, 768), is_before=True)

        self.assertIsNotNone(asset)
        stored = self.repo.get_case(scase.id)
        self.assertEqual(stored.before_photo, asset)
        self.assertIsNone(stored.after_photo)
        self.assertTrue(asset.relative_path.startswith(f"photos/{scase.id}/before-{asset.id}"))
        self.assertTrue(asset.relative_path.endswith(".jpg.enc"))
        self.assertEqual(image_size(self.repo.load_photo_data(stored.before_photo)), (1024, 768))

    def test_reference_survives_restart(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics")
        self.repo.attach_photo(scase.id, make_jpeg(320, 240), is_before=False)
        reopened = self._open()
        asset = reopened.get_case(scase.id).after_photo
        self.assertEqual(image_size(reopened.load_photo_data(asset)), (320, 240))

    def test_missing_case_is_a_noop(self) -> None:
        before = self.repo.db.model_copy(deep=True)
        self.assertIsNone(self.repo.attach_photo(uuid4(), make_jpeg(), is_before=True))
        self.assertEqual(self.repo.db, before)
        self.assertEqual(self.repo.file_store.list_blobs("photos"), [])

    def test_undecodable_image_leaves_aggregate_unchanged(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics")
        with self.assertRaises(EncodeError):
            self.repo.attach_photo(scase.id, b"definitely not an image", is_before=True)
        self.assertIsNone(self.repo.get_case(scase.id).before_photo)
        self.assertEqual(self.repo.file_store.list_blobs("photos"), [])

    def test_failed_blob_write_leaves_reference_unset(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics")
        with mock.patch.object(self.repo.file_store, "write", side_effect=StoreIOError("disk full")):
            with self.assertRaises(StoreIOError):
                self.repo.attach_photo(scase.id, make_jpeg(), is_before=False)
        self.assertIsNone(self.repo.get_case(scase.id).after_photo)

    def test_reattach_orphans_old_blob_until_reclaimed(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics")
        first = self.repo.attach_photo(scase.id, make_jpeg(), is_before=True)
        second = self.repo.attach_photo(scase.id, make_jpeg(80, 60), is_before=True)
        self.assertNotEqual(first.relative_path, second.relative_path)
        self.assertTrue(self.repo.file_store.exists(first.relative_path))

        removed = self.repo.reclaim_orphaned_blobs()
        self.assertEqual(removed, [first.relative_path])
        self.assertFalse(self.repo.file_store.exists(first.relative_path))
        self.assertEqual(image_size(self.repo.load_photo_data(second)), (80, 60))
        self.assertEqual(self.repo.reclaim_orphaned_blobs(), [])

    def test_export_writes_watermarked_png_and_audits(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics")
        self.repo.attach_photo(scase.id, make_jpeg(400, 300), is_before=False)
        path = self.repo.export_case_photo(scase.id, is_before=False)
        self.assertEqual(image_size(path.read_bytes()), (400, 300))
        self.assertNotEqual(path.parent, self.root)
        path.unlink()
        self.assertEqual(list((self._tmp / "exports").iterdir()), [])
        latest = self.repo.db.audit_events[0]
        self.assertEqual(latest.type, AuditEventType.share_export)
        self.assertEqual(latest.case_id, scase.id)

    def test_export_without_photo_raises_not_found(self) -> None:
        scase = self.repo.create_case(uuid4(), "Brow Lift", "Oculoplastics")
        with self.assertRaises(NotFound):
            self.repo.export_case_photo(scase.id, is_before=True)
        with self.assertRaises(NotFound):
            self.repo.export_case_photo(uuid4(), is_before=True)


class TestReminders(RepositoryTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = self._open(clock=lambda: _NOW)

    def test_past_fire_date_gets_minimum_positive_delay(self) -> None:
        case_id = uuid4()
        reminder = self.repo.schedule_reminder(case_id, _NOW - timedelta(hours=1), "test")
        self.assertEqual(len(self.scheduler.scheduled), 1)
        call = self.scheduler.scheduled[0]
        self.assertEqual(call["identifier"], str(reminder.id))
        self.assertGreater(call["delay_seconds"], 0)
        self.assertEqual(call["delay_seconds"], 1.0)
        self.assertEqual(call["body"], "test")

        self.assertEqual(self.repo.db.reminders, [reminder])
        event = self.repo.db.audit_events[0]
        self.assertEqual(event.type, AuditEventType.reminder_scheduled)
        self.assertEqual(event.case_id, case_id)

    def test_future_fire_date_delay(self) -> None:
        self.repo.schedule_reminder(uuid4(), _NOW + timedelta(days=7), "2 week follow-up")
        self.assertAlmostEqual(self.scheduler.scheduled[0]["delay_seconds"], 7 * 86400)

    def test_naive_fire_date_treated_as_utc(self) -> None:
        reminder = self.repo.schedule_reminder(uuid4(), datetime(2025, 6, 1, 13, 0), "naive")
        self.assertEqual(reminder.fire_date.utcoffset(), timedelta(0))
        self.assertAlmostEqual(self.scheduler.scheduled[0]["delay_seconds"], 3600)

    def test_empty_message_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.repo.schedule_reminder(uuid4(), _NOW, "   ")
        self.assertEqual(self.repo.db.reminders, [])
        self.assertEqual(self.scheduler.scheduled, [])

    def test_cancel_reminder(self) -> None:
        reminder = self.repo.schedule_reminder(uuid4(), _NOW + timedelta(days=1), "suture removal")
        self.assertTrue(self.repo.cancel_reminder(reminder.id))
        self.assertEqual(self.repo.db.reminders, [])
        self.assertEqual(self.scheduler.cancelled, [str(reminder.id)])
        self.assertEqual(self.repo.db.audit_events[0].type, AuditEventType.reminder_cancelled)
        self.assertEqual(self._open().db.reminders, [])

    def test_cancel_unknown_reminder_still_audited(self) -> None:
        self.assertFalse(self.repo.cancel_reminder(uuid4()))
        self.assertEqual(len(self.scheduler.cancelled), 1)
        self.assertEqual(self.repo.db.audit_events[0].type, AuditEventType.reminder_cancelled)


class TestConsentAndAudit(RepositoryTestCase):
    def test_save_consent(self) -> None:
        case_id = uuid4()
        record = self.repo.save_consent(case_id, "Jane Doe", "Upper Blepharoplasty", make_png(300, 120))
        self.assertEqual(record.signature_asset.relative_path, f"consents/{case_id}/{record.id}.png.enc")
        self.assertEqual(self.repo.db.consents, [record])
        signature = self.repo.load_photo_data(record.signature_asset)
        self.assertTrue(signature.startswith(b"\x89PNG"))
        self.assertEqual(image_size(signature), (300, 120))
        self.assertEqual(self.repo.db.audit_events[0].type, AuditEventType.consent_captured)

    def test_bad_signature_leaves_aggregate_unchanged(self) -> None:
        with self.assertRaises(EncodeError):
            self.repo.save_consent(uuid4(), "Jane Doe", None, b"")
        self.assertEqual(self.repo.db.consents, [])
        self.assertEqual(self.repo.db.audit_events, [])

    def test_audit_is_newest_first(self) -> None:
        details = [f"event {i}" for i in range(5)]
        for d in details:
            self.repo.record_audit(AuditEventType.screen_capture_detected, details=d)
        stored = self._open().db.audit_events
        self.assertEqual(len(stored), 5)
        self.assertEqual([e.details for e in stored], list(reversed(details)))

    def test_record_audit_accepts_raw_value(self) -> None:
        event = self.repo.record_audit("screenCaptureDetected")
        self.assertEqual(event.type, AuditEventType.screen_capture_detected)
        with self.assertRaises(ValueError):
            self.repo.record_audit("somethingElse")


class TestSaveFailures(RepositoryTestCase):
    def test_save_failure_is_absorbed_and_recorded(self) -> None:
        with mock.patch.object(self.repo.store, "save", side_effect=StoreIOError("disk full")):
            patient = self.repo.create_patient("Jane Doe")
        self.assertIn(patient, self.repo.db.patients)
        self.assertIsInstance(self.repo.last_save_error, StoreIOError)
        self.assertEqual(self._open().db.patients, [])

        self.repo.create_patient("John Roe")
        self.assertIsNone(self.repo.last_save_error)
        self.assertEqual(len(self._open().db.patients), 2)


class TestReset(RepositoryTestCase):
    def test_reset_clears_everything_but_key(self) -> None:
        scase = self.repo.seed_sample_case()
        self.repo.attach_photo(scase.id, make_jpeg(), is_before=True)
        self.repo.record_audit(AuditEventType.screen_capture_detected)
        self.repo.reset()
        self.assertEqual(self.repo.db.cases, [])
        self.assertEqual(self.repo.db.audit_events, [])
        self.assertEqual(self.repo.file_store.list_blobs(), ["db.json"])
        self.assertEqual(len(self.backend.entries), 1)
        self.assertEqual(self._open().db.patients, [])

    def test_interrupted_purge_leaves_no_dangling_reference(self) -> None:
        scase = self.repo.seed_sample_case()
        self.repo.attach_photo(scase.id, make_jpeg(), is_before=True)
        self.repo.save_consent(scase.id, "Jane Doe", None, make_png())

        real_rmtree = shutil.rmtree
        calls = []

        def flaky_rmtree(path, *args, **kwargs):
            calls.append(path)
            if len(calls) > 1:
                raise OSError("device busy")
            real_rmtree(path, *args, **kwargs)

        with mock.patch("atlasvault.storage.file_store.shutil.rmtree", side_effect=flaky_rmtree):
            with self.assertRaises(StoreIOError):
                self.repo.reset()

        for repo in (self.repo, self._open()):
            missing = [p for p in repo._referenced_paths() if not repo.file_store.exists(p)]
            self.assertEqual(missing, [])
            self.assertEqual(repo.db.cases, [])

    def test_reset_can_forget_key(self) -> None:
        self.repo.seed_sample_case()
        self.repo.reset(forget_key=True)
        self.assertEqual(self.backend.entries, {})
        self.assertEqual(self.repo.file_store.list_blobs(), [])
        reopened = self._open()
        self.assertEqual(reopened.db.patients, [])
        self.assertEqual(len(self.backend.entries), 1)

    def test_seed_sample_case(self) -> None:
        scase = self.repo.seed_sample_case()
        self.assertEqual(scase.title, "Upper Blepharoplasty")
        self.assertEqual(self.repo.get_patient(scase.patient_id).full_name, "Jane Doe")


if __name__ == "__main__":
    unittest.main()
