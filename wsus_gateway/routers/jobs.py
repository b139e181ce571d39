"""Background job endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.errors import JobValidationError
from wsus_gateway.models.jobs import Job
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_api_key)])


def _get_or_404(runtime: GatewayRuntime, job_id: str) -> Job:
    try:
        job = runtime.jobs.get_job(job_id)
    except JobValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@router.get("", response_model=list[Job])
async def list_jobs(runtime: GatewayRuntime = Depends(get_runtime)) -> list[Job]:
    return runtime.jobs.get_jobs()


@router.get("/{job_id}", response_model=Job)
async def get_job(job_id: str, runtime: GatewayRuntime = Depends(get_runtime)) -> Job:
    return _get_or_404(runtime, job_id)


@router.delete("/{job_id}", status_code=204)
async def remove_job(job_id: str, runtime: GatewayRuntime = Depends(get_runtime)) -> Response:
    _get_or_404(runtime, job_id)
    runtime.jobs.remove(job_id)
    return Response(status_code=204)
