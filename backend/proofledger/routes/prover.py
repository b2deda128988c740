import asyncio
import base64
import binascii
import json
import logging
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .. import pubsub, schemas
from ..services.channels import normalize_channel_id
from ..services.pipeline import PipelineInputs, PipelineJob, PipelineOrchestrator, ProgressEvent
from .common import domain_errors, rate_limit

router = APIRouter(prefix="/api/prover", tags=["prover"])

_logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def get_orchestrator() -> PipelineOrchestrator:
    return PipelineOrchestrator()


def _render_sse_payload(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def _create_job(orchestrator: PipelineOrchestrator, payload: schemas.SynthesizeRequest) -> PipelineJob:
    inputs = PipelineInputs(
        previous_state_snapshot=payload.previous_state_snapshot,
        signed_tx_rlp=payload.signed_tx_rlp,
        block_info=payload.block_info,
        contract_codes=payload.contract_codes,
        include_proof=payload.include_proof,
    )
    with domain_errors():
        channel_id = normalize_channel_id(payload.channel_id)
        return orchestrator.create_job(channel_id, inputs)


async def _publish_progress(job: PipelineJob, event: ProgressEvent) -> None:
    # observers get progress only; the archive goes to the requesting client
    await pubsub.publish_pipeline_event(
        job.channel_id,
        {"jobId": job.job_id, **event.to_payload(include_artifact=False)},
    )


@router.post("/synthesize")
@rate_limit("5/minute")
async def synthesize(
    request: Request,
    payload: schemas.SynthesizeRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    job = _create_job(orchestrator, payload)

    async def emit(event: ProgressEvent) -> None:
        await _publish_progress(job, event)

    outcome = await orchestrator.run(job, emit=emit)
    if not outcome.succeeded:
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to synthesize L2 transaction",
                "details": outcome.error_detail,
                "stage": outcome.stage,
            },
        )
    return Response(
        content=outcome.artifact,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{job.archive_name}"'},
    )


@router.post("/synthesize-stream")
@rate_limit("5/minute")
async def synthesize_stream(
    request: Request,
    payload: schemas.SynthesizeRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Run a generation job and stream its progress as server-sent events."""

    # purpose: live stage updates for the dashboard's proof generation panel
    # inputs: synthesize request body
    # outputs: SSE frames ending in exactly one completed or error frame
    # status: pilot
    job = _create_job(orchestrator, payload)

    async def event_iterator():
        async with aclosing(orchestrator.stream(job)) as events:
            async for event in events:
                await _publish_progress(job, event)
                yield event.to_frame()

    return StreamingResponse(event_iterator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/verify", response_model=schemas.VerificationOut)
@rate_limit("10/minute")
async def verify_proof_bundle(
    request: Request,
    payload: schemas.VerifyBundleRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        bundle = base64.b64decode(payload.proof_zip_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="proofZipBase64 is not valid base64") from exc
    if not bundle:
        raise HTTPException(status_code=400, detail="Missing required field: proofZipBase64")
    with domain_errors():
        report = await orchestrator.verify_bundle(bundle)
    return report.as_response()


@router.get("/events/{channel_id}")
async def pipeline_events(request: Request, channel_id: str) -> StreamingResponse:
    """Relay another client's generation progress for ``channel_id``."""

    with domain_errors():
        channel = normalize_channel_id(channel_id)

    async def event_iterator():
        redis_conn = await pubsub.get_redis()
        pubsub_conn = redis_conn.pubsub()
        await pubsub_conn.subscribe(f"pipeline:{channel}")
        idle_seconds = 0.0
        try:
            while True:
                if await request.is_disconnected():
                    break
                message = await pubsub_conn.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message.get("type") == "message":
                    data = message.get("data")
                    if isinstance(data, bytes):
                        data = data.decode()
                    try:
                        event = json.loads(data)
                    except (TypeError, json.JSONDecodeError):
                        _logger.warning("dropping malformed pipeline event on %s", channel)
                        continue
                    idle_seconds = 0.0
                    yield _render_sse_payload(event)
                    continue
                idle_seconds += 1.0
                if idle_seconds >= 15:
                    yield ": keep-alive\n\n"
                    idle_seconds = 0.0
                await asyncio.sleep(0)
        finally:
            await pubsub_conn.unsubscribe(f"pipeline:{channel}")
            await pubsub_conn.close()

    return StreamingResponse(event_iterator(), media_type="text/event-stream", headers=SSE_HEADERS)
