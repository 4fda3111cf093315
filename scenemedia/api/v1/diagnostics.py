import logging

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from scenemedia.api.deps import LibraryDep
from scenemedia.api.v1.jobs import job_status
from scenemedia.api.v1.schemas import JobStatusRead, MigrationReportRead, RestoreRequest, RestoreResult
from scenemedia.core.request_context import get_request_id, reset_request_id, set_request_id
from scenemedia.db.session import session_scope
from scenemedia.services import job_queue
from scenemedia.services.assets import utcnow
from scenemedia.services.library import MediaLibrary
from scenemedia.services.migration import REPAIR_OPERATIONS


router = APIRouter(prefix="/diagnostics", tags=["diagnostics"])
logger = logging.getLogger(__name__)

RUN_ALL = "all"


def _handle_repair_job(job: job_queue.JobRecord) -> dict | None:
    operation = job.payload["operation"]
    token = set_request_id(job.request_id or str(job.job_id))
    try:
        with session_scope() as db:
            library = MediaLibrary.build(db)
            logger.info("repair_job_started", extra={"operation": operation})
            job_queue.update_job_progress(job.job_id, {"operation": operation, "message": "running"})
            if operation == RUN_ALL:
                return {"changed": library.repair.run_all()}
            return {"changed": {operation: getattr(library.repair, operation)()}}
    finally:
        reset_request_id(token)


@router.get("/migration", response_model=MigrationReportRead)
def verify_migration(library=LibraryDep):
    return library.verifier.verify().to_dict()


@router.post("/repairs/{operation}", response_model=JobStatusRead)
def enqueue_repair(operation: str, response: Response):
    if operation not in REPAIR_OPERATIONS and operation != RUN_ALL:
        raise ValueError(f"unknown repair operation: {operation}")
    job = job_queue.enqueue_job(
        f"repair:{operation}",
        {"operation": operation},
        _handle_repair_job,
        request_id=get_request_id(),
    )
    response.status_code = 202
    return job_status(job)


@router.get("/export")
def export_database(library=LibraryDep):
    snapshot = library.repair.export_database()
    filename = f"scenemedia-backup-{utcnow():%Y%m%dT%H%M%SZ}.json"
    return JSONResponse(
        content=snapshot,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/restore", response_model=RestoreResult)
def restore_database(payload: RestoreRequest, library=LibraryDep):
    counts = library.repair.restore_database(payload.snapshot, replace=payload.replace)
    return RestoreResult(counts=counts)
