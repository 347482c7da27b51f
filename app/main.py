import re
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile

from .config import settings
from .csv_ingest import CsvIngestError
from .db import fetch_db_info
from .jobs import JobNotFoundError
from .logging_utils import configure_logging
from .schemas import JobCancelled, JobCreated, JobStatusOut
from .services import Services, open_services
from .worker import UploadRejectedError, submit_upload

_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._-]+")
_COPY_CHUNK_BYTES = 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    services = open_services(settings)
    app.state.services = services
    try:
        yield
    finally:
        services.close()


app = FastAPI(title="Shift Notes Analysis API", lifespan=lifespan)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_owner_id(x_user_id: str = Header(default="")) -> str:
    owner_id = x_user_id.strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="missing caller identity")
    return owner_id


def _store_upload(upload: UploadFile, upload_dir: Path, max_bytes: int) -> Path:
    upload_dir.mkdir(parents=True, exist_ok=True)
    safe_name = _UNSAFE_NAME_RE.sub("-", Path(upload.filename or "upload.csv").name)
    target = upload_dir / f"{int(time.time() * 1000)}-{safe_name}"
    written = 0
    with target.open("wb") as handle:
        while True:
            chunk = upload.file.read(_COPY_CHUNK_BYTES)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                handle.close()
                target.unlink(missing_ok=True)
                raise HTTPException(status_code=413, detail="uploaded file is too large")
            handle.write(chunk)
    return target


@app.get("/health")
def health(services: Services = Depends(get_services)) -> dict:
    try:
        info = fetch_db_info(services.engine)
    except Exception as exc:  # pragma: no cover - safety
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"status": "ok", "db": info}


@app.post("/analysis-jobs", response_model=JobCreated)
def create_analysis_job(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    stored = _store_upload(
        file, Path(services.settings.upload_dir), services.settings.upload_max_bytes
    )
    try:
        return submit_upload(
            services,
            owner_id=owner_id,
            file_name=file.filename or stored.name,
            file_path=str(stored),
            content_type=file.content_type,
        )
    except (UploadRejectedError, CsvIngestError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/analysis-jobs")
def list_analysis_jobs(
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    return services.jobs.list_jobs(owner_id, limit=limit)


@app.get("/analysis-jobs/{job_id}/status", response_model=JobStatusOut)
def get_analysis_job_status(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    try:
        return services.jobs.get_job_status(job_id, owner_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="job not found") from exc


@app.post("/analysis-jobs/{job_id}/cancel", response_model=JobCancelled)
def cancel_analysis_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    try:
        return {"status": services.jobs.cancel_job(job_id, owner_id)}
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="job not found") from exc


@app.get("/analysis-jobs/{job_id}")
def get_analysis_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
) -> dict:
    try:
        return services.jobs.get_job(job_id, owner_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="job not found") from exc
