# signserver/routers/signing.py
from __future__ import annotations
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import PlainTextResponse, StreamingResponse
import pydantic

from signserver.core.errors import ValidationError
from signserver.core.models import CreateJobResponse, JobStatus, SignMetadata
from signserver.security import require_request_key
from signserver.services.gateway import JobGateway, iter_file
from signserver.services.jobs import JobOrchestrator

router = APIRouter(tags=["signing"], dependencies=[Depends(require_request_key)])


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def get_gateway(request: Request) -> JobGateway:
    return request.app.state.gateway


def _metadata(name: Optional[str], url: Optional[str]) -> SignMetadata:
    try:
        return SignMetadata(app_name=name, app_url=url)
    except pydantic.ValidationError as e:
        msgs = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"invalid application metadata: {msgs}") from e


async def _counted_body(request: Request) -> AsyncIterator[bytes]:
    # request log reports how much of the body was read, even on failure
    request.state.upload_bytes = 0
    async for chunk in request.stream():
        request.state.upload_bytes += len(chunk)
        yield chunk


def logged_job_id(job_id: int, request: Request) -> int:
    request.state.job_id = job_id
    return job_id


@router.post("/sign", response_model=CreateJobResponse)
async def sign(
    request: Request,
    x_application_name: Optional[str] = Header(None),
    x_application_url: Optional[str] = Header(None),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    # metadata is checked before anything touches the disk
    metadata = _metadata(x_application_name, x_application_url)
    job_id = await orchestrator.submit(_counted_body(request), metadata)
    request.state.job_id = job_id
    return CreateJobResponse(id=job_id)


@router.get("/status/{job_id}", response_model=JobStatus)
def get_status(job_id: int = Depends(logged_job_id), gateway: JobGateway = Depends(get_gateway)):
    return gateway.get_status(job_id).to_api()


@router.get("/download/{job_id}")
def download(job_id: int = Depends(logged_job_id), gateway: JobGateway = Depends(get_gateway)):
    result = gateway.download(job_id)
    job = result.job
    if job.processing:
        return PlainTextResponse("job is still processing", status_code=status.HTTP_202_ACCEPTED)
    if not job.success:
        return PlainTextResponse(job.error, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return StreamingResponse(iter_file(result.stream), media_type="application/octet-stream")
