import base64

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from .. import pubsub, schemas
from ..services import proof_registry, submissions
from ..services.adjudicator import VerificationAdjudicator
from ..services.channels import normalize_channel_id
from ..services.sequence_allocator import SequenceAllocator
from ..store import PathStore, get_store
from .common import domain_errors, rate_limit

router = APIRouter(prefix="/api/channels", tags=["proofs"])


def get_allocator(store: PathStore = Depends(get_store)) -> SequenceAllocator:
    return SequenceAllocator(store)


def get_adjudicator(store: PathStore = Depends(get_store)) -> VerificationAdjudicator:
    return VerificationAdjudicator(store)


@router.post("/{channel_id}/proofs/reserve", response_model=schemas.ReservationOut)
@rate_limit("30/minute")
async def reserve_proof_slot(
    request: Request,
    channel_id: str,
    allocator: SequenceAllocator = Depends(get_allocator),
):
    with domain_errors():
        reservation = await run_in_threadpool(allocator.reserve, channel_id)
    return reservation.as_response()


@router.get("/{channel_id}/proofs", response_model=schemas.ProofListOut)
async def list_proofs(
    channel_id: str,
    collection: schemas.ProofCollection = Query("submitted", alias="type"),
    store: PathStore = Depends(get_store),
):
    with domain_errors():
        proofs = await run_in_threadpool(proof_registry.list_proofs, store, channel_id, collection)
    proofs.sort(key=lambda proof: (proof.get("sequenceNumber") or 0, proof.get("subNumber") or 0))
    return {"success": True, "data": proofs}


@router.post("/{channel_id}/proofs", response_model=schemas.ProofSubmissionOut, status_code=201)
@rate_limit("10/minute")
async def submit_proof(
    request: Request,
    channel_id: str,
    file: UploadFile = File(...),
    storage_proof_id: str = Form(..., alias="storageProofId"),
    sequence_number: int = Form(..., alias="sequenceNumber"),
    sub_number: int = Form(..., alias="subNumber"),
    submitter: str = Form(...),
    store: PathStore = Depends(get_store),
    allocator: SequenceAllocator = Depends(get_allocator),
):
    data = await file.read()
    with domain_errors():
        proof = await run_in_threadpool(
            submissions.submit_proof,
            store,
            channel_id,
            data,
            sequence_number=sequence_number,
            sub_number=sub_number,
            submitter=submitter,
            storage_proof_id=storage_proof_id,
            file_name=file.filename,
            allocator=allocator,
        )
    await pubsub.publish_channel_event(
        normalize_channel_id(channel_id),
        {
            "type": "proof_submitted",
            "key": proof["key"],
            "proofId": proof["proofId"],
            "sequenceNumber": proof["sequenceNumber"],
            "subNumber": proof["subNumber"],
            "submitter": proof["submitter"],
        },
    )
    return {"success": True, "key": proof["key"], "proof": proof}


@router.get("/{channel_id}/proofs/{collection}/{key}", response_model=schemas.ProofRecord)
async def get_proof(
    channel_id: str,
    collection: schemas.ProofCollection,
    key: str,
    store: PathStore = Depends(get_store),
):
    with domain_errors():
        return await run_in_threadpool(proof_registry.get_proof, store, channel_id, collection, key)


@router.get("/{channel_id}/proofs/{collection}/{key}/artifact")
async def download_artifact(
    channel_id: str,
    collection: schemas.ProofCollection,
    key: str,
    encoding: str = Query("base64", alias="format", pattern="^(base64|binary)$"),
    store: PathStore = Depends(get_store),
):
    with domain_errors():
        data, file_name = await run_in_threadpool(
            submissions.load_artifact, store, channel_id, collection, key
        )
    if encoding == "binary":
        return Response(
            content=data,
            media_type=submissions.BUNDLE_MIME_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
        )
    return schemas.ArtifactContentOut(
        content=base64.b64encode(data).decode("ascii"),
        file_name=file_name,
        size=len(data),
    )


@router.delete("/{channel_id}/proofs/{key}", response_model=schemas.ProofDeleteOut)
async def delete_proof(
    channel_id: str,
    key: str,
    user_address: str = Query(..., alias="userAddress"),
    is_leader: bool = Query(False, alias="isLeader"),
    store: PathStore = Depends(get_store),
):
    with domain_errors():
        collection = await run_in_threadpool(
            submissions.delete_proof,
            store,
            channel_id,
            key,
            user_address=user_address,
            is_leader=is_leader,
        )
    await pubsub.publish_channel_event(
        normalize_channel_id(channel_id),
        {"type": "proof_deleted", "key": key, "collection": collection},
    )
    return {
        "message": "Proof deleted successfully",
        "deleted_proof_key": key,
        "location": proof_registry.collection_path(channel_id, collection),
    }


@router.post("/{channel_id}/proofs/{key}/adjudicate", response_model=schemas.AdjudicationOut)
async def adjudicate_proof(
    channel_id: str,
    key: str,
    payload: schemas.AdjudicationRequest,
    adjudicator: VerificationAdjudicator = Depends(get_adjudicator),
):
    with domain_errors():
        result = await run_in_threadpool(
            adjudicator.adjudicate,
            channel_id,
            key,
            payload.sequence_number,
            payload.verifier_address,
        )
    response = result.as_response()
    await pubsub.publish_channel_event(
        normalize_channel_id(channel_id),
        {
            "type": "proof_verified",
            "key": key,
            "sequenceNumber": payload.sequence_number,
            "rejectedCount": result.rejected_count,
            "verifier": payload.verifier_address,
        },
    )
    return response
