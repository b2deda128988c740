from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from .. import schemas
from ..services import channels as channel_service
from ..store import PathStore, get_store
from .common import domain_errors

router = APIRouter(prefix="/api/channels", tags=["channels"])


@router.get("", response_model=list[schemas.ChannelOut])
async def list_channels(
    status: Optional[str] = Query(None),
    store: PathStore = Depends(get_store),
):
    with domain_errors():
        if status == "active":
            return await run_in_threadpool(channel_service.list_active_channels, store)
        channels = await run_in_threadpool(channel_service.list_channels, store)
    if status:
        channels = [channel for channel in channels if channel.get("status") == status]
    return channels


@router.get("/{channel_id}", response_model=schemas.ChannelOut)
async def get_channel(channel_id: str, store: PathStore = Depends(get_store)):
    with domain_errors():
        channel = await run_in_threadpool(channel_service.get_channel, store, channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


@router.put("/{channel_id}", response_model=schemas.ChannelOut)
async def save_channel(
    channel_id: str,
    payload: schemas.ChannelIn,
    store: PathStore = Depends(get_store),
):
    data = payload.model_dump(by_alias=True, exclude_none=True)
    with domain_errors():
        return await run_in_threadpool(channel_service.save_channel, store, channel_id, data)


@router.patch("/{channel_id}", response_model=schemas.ChannelOut)
async def update_channel(
    channel_id: str,
    payload: schemas.ChannelIn,
    store: PathStore = Depends(get_store),
):
    updates = payload.model_dump(by_alias=True, exclude_unset=True)
    with domain_errors():
        existing = await run_in_threadpool(channel_service.get_channel, store, channel_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Channel not found")
        return await run_in_threadpool(channel_service.update_channel, store, channel_id, updates)


@router.get("/{channel_id}/snapshots", response_model=schemas.SnapshotListOut)
async def list_snapshots(
    channel_id: str,
    limit: int = Query(10, ge=1, le=100),
    store: PathStore = Depends(get_store),
):
    with domain_errors():
        snapshots = await run_in_threadpool(channel_service.list_snapshots, store, channel_id, limit)
    return {"snapshots": snapshots}


@router.get("/{channel_id}/snapshots/latest", response_model=schemas.SnapshotOut)
async def latest_snapshot(channel_id: str, store: PathStore = Depends(get_store)):
    with domain_errors():
        snapshot = await run_in_threadpool(channel_service.latest_snapshot, store, channel_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No snapshots recorded for channel")
    return snapshot


@router.post("/{channel_id}/snapshots", response_model=schemas.SnapshotCreatedOut, status_code=201)
async def create_snapshot(
    channel_id: str,
    payload: schemas.SnapshotIn,
    store: PathStore = Depends(get_store),
):
    data = payload.model_dump(by_alias=True, exclude_none=True)
    with domain_errors():
        key = await run_in_threadpool(channel_service.save_snapshot, store, channel_id, data)
    return {"snapshot_id": key}
