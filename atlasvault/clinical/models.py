# -*- coding: utf-8 -*-
"""Clinical photography — Pydantic models.

Design goals:
- The whole dataset is one aggregate (``AppDatabase``) persisted as a single
  encrypted JSON snapshot; every save replaces it completely.
- Photos and signatures never live inside the snapshot, only references
  (``PhotoAsset.relative_path``) into the encrypted blob store.
- New optional fields must default so older snapshots keep loading.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Procedure(str, Enum):
    upper_blepharoplasty = "Upper Blepharoplasty"
    lower_blepharoplasty = "Lower Blepharoplasty"
    ptosis_repair = "Ptosis Repair"
    brow_lift = "Brow Lift"
    ectropion_repair = "Ectropion Repair"
    entropion_repair = "Entropion Repair"
    dacryocystorhinostomy = "Dacryocystorhinostomy (DCR)"
    canthoplasty = "Canthoplasty/Canthopexy"
    orbital_decompression = "Orbital Decompression"


class AuditEventType(str, Enum):
    share_export = "shareExport"
    reminder_scheduled = "reminderScheduled"
    reminder_cancelled = "reminderCancelled"
    consent_captured = "consentCaptured"
    screen_capture_detected = "screenCaptureDetected"


def audit_label(event_type: AuditEventType) -> str:
    if event_type is AuditEventType.share_export:
        return "Photo exported"
    elif event_type is AuditEventType.reminder_scheduled:
        return "Reminder scheduled"
    elif event_type is AuditEventType.reminder_cancelled:
        return "Reminder cancelled"
    elif event_type is AuditEventType.consent_captured:
        return "Consent captured"
    elif event_type is AuditEventType.screen_capture_detected:
        return "Screen capture detected"
    raise ValueError(f"unhandled audit event type: {event_type!r}")


class Patient(BaseModel):
    id: UUID
    full_name: str
    date_of_birth: Optional[date] = None


class PhotoAsset(BaseModel):
    id: UUID
    relative_path: str = Field(..., description="Logical path inside the encrypted store")
    captured_at: datetime
    notes: Optional[str] = None


class SurgicalCase(BaseModel):
    id: UUID
    patient_id: UUID
    title: str
    specialty: str = Field(..., description='e.g. "Oculoplastics"')
    procedure: Optional[Procedure] = None
    created_at: datetime
    before_photo: Optional[PhotoAsset] = None
    after_photo: Optional[PhotoAsset] = None


class Reminder(BaseModel):
    id: UUID
    case_id: UUID
    fire_date: datetime
    message: str


class AuditEvent(BaseModel):
    id: UUID
    timestamp: datetime
    type: AuditEventType
    case_id: Optional[UUID] = None
    details: Optional[str] = None


class ConsentRecord(BaseModel):
    id: UUID
    case_id: UUID
    patient_name: str
    procedure: Optional[str] = None
    signed_at: datetime
    signature_asset: PhotoAsset


class AppDatabase(BaseModel):
    patients: List[Patient] = Field(default_factory=list)
    cases: List[SurgicalCase] = Field(default_factory=list)
    reminders: List[Reminder] = Field(default_factory=list)
    consents: List[ConsentRecord] = Field(default_factory=list)
    audit_events: List[AuditEvent] = Field(default_factory=list, description="Newest first")


# --------------------------------------------------------------------------- #
# API payloads
# --------------------------------------------------------------------------- #


class PatientCreateRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=256)
    date_of_birth: Optional[date] = None


class PatientsResponse(BaseModel):
    count: int
    patients: List[Patient]


class CaseCreateRequest(BaseModel):
    patient_id: UUID
    title: str = Field(..., min_length=1, max_length=256)
    specialty: str = Field("Oculoplastics", max_length=128)
    procedure: Optional[Procedure] = None


class CasesResponse(BaseModel):
    count: int
    cases: List[SurgicalCase]


class ReminderCreateRequest(BaseModel):
    case_id: UUID
    fire_date: datetime = Field(..., description="ISO8601; past dates fire after the minimum delay")
    message: str = Field(..., min_length=1, max_length=1000)


class RemindersResponse(BaseModel):
    count: int
    reminders: List[Reminder]


class AuditRecordRequest(BaseModel):
    type: AuditEventType
    case_id: Optional[UUID] = None
    details: Optional[str] = Field(None, max_length=2000)


class AuditEventsResponse(BaseModel):
    count: int
    events: List[AuditEvent]


class ShareExportRequest(BaseModel):
    is_before: bool = True
    provider: Optional[str] = Field(None, max_length=128)
    clinic: Optional[str] = Field(None, max_length=128)
