# -*- coding: utf-8 -*-
"""Clinical photography — API endpoints."""

from __future__ import annotations

import threading
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse, Response
from starlette.background import BackgroundTask

from ..config import settings
from ..share import Watermark
from .models import (
    AuditEvent,
    AuditEventsResponse,
    AuditRecordRequest,
    CaseCreateRequest,
    CasesResponse,
    ConsentRecord,
    Patient,
    PatientCreateRequest,
    PatientsResponse,
    PhotoAsset,
    Reminder,
    ReminderCreateRequest,
    RemindersResponse,
    ShareExportRequest,
    SurgicalCase,
)
from .repository import AppRepository

router = APIRouter(prefix="/api", tags=["Clinical"])


def get_repository(request: Request) -> AppRepository:
    return request.app.state.repository


def get_write_lock(request: Request) -> threading.Lock:
    # Endpoints run in a threadpool; the repository expects one writer at a time.
    return request.app.state.write_lock


def _read_upload(upload: UploadFile) -> bytes:
    max_bytes = int(settings.max_upload_mb) * 1024 * 1024
    try:
        data = upload.file.read(max_bytes + 1)
    finally:
        upload.file.close()
    if len(data) > max_bytes:
        raise HTTPException(status_code=400, detail=f"File too large (> {settings.max_upload_mb} MB)")
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")
    return data


def _case_or_404(repo: AppRepository, case_id: UUID) -> SurgicalCase:
    scase = repo.get_case(case_id)
    if scase is None:
        raise HTTPException(status_code=404, detail="Case not found")
    return scase


# --------------------------------------------------------------------------- #
# Patients / cases
# --------------------------------------------------------------------------- #


@router.post("/patients", response_model=Patient, summary="Create a patient")
def create_patient_api(
    request: PatientCreateRequest,
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    with lock:
        return repo.create_patient(request.full_name, request.date_of_birth)


@router.get("/patients", response_model=PatientsResponse, summary="List patients")
def list_patients_api(repo: AppRepository = Depends(get_repository)):
    patients = list(repo.db.patients)
    return PatientsResponse(count=len(patients), patients=patients)


@router.post("/cases", response_model=SurgicalCase, summary="Create a surgical case")
def create_case_api(
    request: CaseCreateRequest,
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    with lock:
        return repo.create_case(request.patient_id, request.title, request.specialty, request.procedure)


@router.get("/cases", response_model=CasesResponse, summary="List surgical cases")
def list_cases_api(
    patient_id: UUID | None = Query(default=None),
    repo: AppRepository = Depends(get_repository),
):
    cases = repo.list_cases(patient_id)
    return CasesResponse(count=len(cases), cases=cases)


@router.get("/cases/{case_id}", response_model=SurgicalCase, summary="Get a surgical case")
def get_case_api(case_id: UUID, repo: AppRepository = Depends(get_repository)):
    return _case_or_404(repo, case_id)


# --------------------------------------------------------------------------- #
# Photos
# --------------------------------------------------------------------------- #


@router.post("/cases/{case_id}/photos", response_model=PhotoAsset, summary="Attach a before/after photo")
def attach_photo_api(
    case_id: UUID,
    is_before: bool = Form(...),
    file: UploadFile = File(...),
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    data = _read_upload(file)
    with lock:
        asset = repo.attach_photo(case_id, data, is_before)
    if asset is None:
        raise HTTPException(status_code=404, detail="Case not found")
    return asset


@router.get("/cases/{case_id}/photos/{role}", summary="Download a decrypted case photo")
def get_photo_api(case_id: UUID, role: str, repo: AppRepository = Depends(get_repository)):
    if role not in ("before", "after"):
        raise HTTPException(status_code=400, detail="role must be 'before' or 'after'")
    scase = _case_or_404(repo, case_id)
    asset = scase.before_photo if role == "before" else scase.after_photo
    if asset is None:
        raise HTTPException(status_code=404, detail=f"No {role} photo")
    return Response(content=repo.load_photo_data(asset), media_type="image/jpeg")


@router.post("/cases/{case_id}/export", summary="Export a watermarked photo for sharing")
def export_photo_api(
    case_id: UUID,
    request: ShareExportRequest,
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    scase = _case_or_404(repo, case_id)
    wm = Watermark(
        provider=request.provider if request.provider is not None else settings.watermark_provider,
        clinic=request.clinic if request.clinic is not None else settings.watermark_clinic,
        case_title=scase.title,
    )
    with lock:
        path = repo.export_case_photo(case_id, request.is_before, wm)
    return FileResponse(
        path,
        media_type="image/png",
        filename=f"{case_id}-{'before' if request.is_before else 'after'}.png",
        background=BackgroundTask(path.unlink, missing_ok=True),
    )


# --------------------------------------------------------------------------- #
# Reminders
# --------------------------------------------------------------------------- #


@router.post("/reminders", response_model=Reminder, summary="Schedule a follow-up reminder")
def schedule_reminder_api(
    request: ReminderCreateRequest,
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    with lock:
        return repo.schedule_reminder(request.case_id, request.fire_date, request.message)


@router.get("/reminders", response_model=RemindersResponse, summary="List reminders")
def list_reminders_api(repo: AppRepository = Depends(get_repository)):
    reminders = list(repo.db.reminders)
    return RemindersResponse(count=len(reminders), reminders=reminders)


@router.delete("/reminders/{reminder_id}", summary="Cancel a reminder")
def cancel_reminder_api(
    reminder_id: UUID,
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    with lock:
        removed = repo.cancel_reminder(reminder_id)
    return {"ok": True, "removed": removed}


# --------------------------------------------------------------------------- #
# Consent / audit
# --------------------------------------------------------------------------- #


@router.post("/consents", response_model=ConsentRecord, summary="Capture a signed consent")
def save_consent_api(
    case_id: UUID = Form(...),
    patient_name: str = Form(..., min_length=1, max_length=256),
    procedure: str | None = Form(default=None),
    signature: UploadFile = File(...),
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    data = _read_upload(signature)
    with lock:
        return repo.save_consent(case_id, patient_name, procedure or None, data)


@router.get("/audit", response_model=AuditEventsResponse, summary="List audit events (newest first)")
def list_audit_api(
    limit: int = Query(default=100, ge=1, le=1000),
    repo: AppRepository = Depends(get_repository),
):
    events = repo.db.audit_events[:limit]
    return AuditEventsResponse(count=len(events), events=events)


@router.post("/audit", response_model=AuditEvent, summary="Record an audit event")
def record_audit_api(
    request: AuditRecordRequest,
    repo: AppRepository = Depends(get_repository),
    lock: threading.Lock = Depends(get_write_lock),
):
    with lock:
        return repo.record_audit(request.type, case_id=request.case_id, details=request.details)
