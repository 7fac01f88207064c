from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from scribe_api.db.session import get_db
from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.services import ledger
from scribe_api.services.budget import check_budget, usage_summary
from scribe_api.services.drive import DriveAuthError
from scribe_api.services.export import ExportError, export_transcript
from scribe_api.services.orchestrator import get_status
from scribe_api.services.submission import (
    BudgetExceeded,
    CloudFile,
    JobNotFound,
    LocalUpload,
    SubmissionRejected,
    SubmissionResult,
    retry,
    submit,
)

router = APIRouter(prefix="/transcriptions", tags=["transcriptions"])


class SubmitResponse(BaseModel):
    ok: bool
    job_id: str
    backend: str
    status: str


class FromDriveRequest(BaseModel):
    owner: str
    file_id: str
    project: str | None = None


class JobStatusResponse(BaseModel):
    ok: bool
    job_id: str
    status: str
    progress: int
    eta_seconds: int
    result: dict[str, Any] | None = None
    error: str | None = None


def _upload_size(file: UploadFile) -> int:
    if file.size is not None:
        return int(file.size)
    f = file.file
    pos = f.tell()
    f.seek(0, 2)
    size = f.tell()
    f.seek(pos)
    return size


def _submit_or_raise(fn, *args) -> SubmissionResult:
    try:
        return fn(*args)
    except SubmissionRejected as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DriveAuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Transcription job not found")
    except BudgetExceeded as e:
        d = e.decision
        raise HTTPException(
            status_code=429,
            detail={
                "message": d.reason,
                "used_hours": d.used_hours,
                "used_cost": d.used_cost,
                "estimated_hours": d.estimated_hours,
                "estimated_cost": d.estimated_cost,
            },
        )


def _job_summary(job: TranscriptionJob) -> dict[str, Any]:
    return {
        "job_id": job.job_id,
        "record_id": job.id,
        "filename": job.filename,
        "project": job.project,
        "backend": job.backend,
        "status": job.status,
        "progress": 100 if job.status == "completed" else (0 if job.status == "error" else job.progress),
        "file_size_bytes": job.file_size_bytes,
        "audio_duration_seconds": job.audio_duration_seconds,
        "category": job.category,
        "tags": job.tags,
        "error": job.error_message,
        "retry_of": job.retry_of,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


@router.post("", response_model=SubmitResponse)
def create_transcription(
    file: UploadFile | None = File(default=None),
    owner: str = Form(default=""),
    project: str = Form(default="general"),
    db: Session = Depends(get_db),
) -> SubmitResponse:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    source = LocalUpload(filename=file.filename, fileobj=file.file, size=_upload_size(file))
    res = _submit_or_raise(submit, db, source, owner, project)
    return SubmitResponse(ok=True, **res.to_dict())


@router.post("/from-drive", response_model=SubmitResponse)
def create_transcription_from_drive(req: FromDriveRequest, db: Session = Depends(get_db)) -> SubmitResponse:
    res = _submit_or_raise(submit, db, CloudFile(file_id=req.file_id), req.owner, req.project)
    return SubmitResponse(ok=True, **res.to_dict())


@router.get("/budget")
def get_budget(
    owner: str = Query(...),
    estimated_hours: float = Query(default=0.0, ge=0.0),
    db: Session = Depends(get_db),
):
    decision = check_budget(db, owner, estimated_hours)
    return {"ok": True, "decision": decision.to_dict(), "usage": usage_summary(db, owner)}


@router.get("")
def list_transcriptions(
    owner: str = Query(...),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    jobs = ledger.list_jobs(db, owner, limit=limit)
    return {"ok": True, "owner": owner, "count": len(jobs), "jobs": [_job_summary(j) for j in jobs]}


@router.post("/{job_id}/retry", response_model=SubmitResponse)
def retry_transcription(job_id: str, db: Session = Depends(get_db)) -> SubmitResponse:
    res = _submit_or_raise(retry, db, job_id)
    return SubmitResponse(ok=True, **res.to_dict())


@router.get("/{job_id}/export")
def export_transcription(
    job_id: str,
    format: str = Query(default="txt"),
    db: Session = Depends(get_db),
) -> Response:
    job = ledger.find_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Transcription job not found")
    try:
        out = export_transcript(job, format)
    except ExportError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(
        content=out.content,
        media_type=out.media_type,
        headers={"Content-Disposition": f'attachment; filename="{out.filename}"'},
    )


@router.get("/{job_id}", response_model=JobStatusResponse)
def get_transcription(job_id: str, db: Session = Depends(get_db)) -> JobStatusResponse:
    view = get_status(db, job_id)
    return JobStatusResponse(ok=True, **view.to_dict())
