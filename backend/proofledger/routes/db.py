from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from .. import schemas
from ..store import CHANNEL_NAMESPACE, PathStore, get_store, split_path
from .common import domain_errors

router = APIRouter(prefix="/api/db", tags=["db"])

# per-channel subtrees that only the proof lifecycle endpoints may write
PROTECTED_CHANNEL_KEYS = {
    "submittedProofs",
    "verifiedProofs",
    "rejectedProofs",
    "sequenceCounters",
    "adjudications",
}


def _guard_write(path: str) -> None:
    parts = split_path(path)
    if len(parts) >= 3 and parts[0] == CHANNEL_NAMESPACE and parts[2] in PROTECTED_CHANNEL_KEYS:
        raise HTTPException(
            status_code=403,
            detail=f"{parts[2]} is managed by the proof endpoints",
        )
    if len(parts) == 2 and parts[0] == CHANNEL_NAMESPACE:
        raise HTTPException(
            status_code=403,
            detail="Channel records are written through /api/channels",
        )


@router.get("", response_model=schemas.PathReadOut)
async def read_path(path: str = Query(""), store: PathStore = Depends(get_store)):
    with domain_errors():
        data = await run_in_threadpool(store.get, path)
    return {"data": data}


@router.post("", response_model=schemas.PathWriteOut)
async def write_path(payload: schemas.PathWriteRequest, store: PathStore = Depends(get_store)):
    _guard_write(payload.path)
    with domain_errors():
        if payload.operation == "push":
            key = await run_in_threadpool(store.push, payload.path, payload.data)
            return {"key": key}
        if payload.operation == "update":
            if not isinstance(payload.data, dict):
                raise HTTPException(status_code=400, detail="update requires an object payload")
            await run_in_threadpool(store.update, payload.path, payload.data)
        else:
            await run_in_threadpool(store.set, payload.path, payload.data)
    return {}


@router.delete("", response_model=schemas.PathWriteOut)
async def delete_path(path: str = Query(...), store: PathStore = Depends(get_store)):
    _guard_write(path)
    with domain_errors():
        await run_in_threadpool(store.delete, path)
    return {}
