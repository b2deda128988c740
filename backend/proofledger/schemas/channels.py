"""Schemas for channel records and state snapshots."""

# purpose: accept channel and snapshot payloads whose shape is owned by the client
# status: pilot

from typing import Optional

from pydantic import Field

from .common import CamelModel, OpenCamelModel


class ChannelIn(OpenCamelModel):
    status: Optional[str] = None
    leader: Optional[str] = None
    target_contract: Optional[str] = None
    participants: Optional[list[str]] = None


class ChannelOut(OpenCamelModel):
    channel_id: str
    status: Optional[str] = None
    leader: Optional[str] = None


class SnapshotIn(OpenCamelModel):
    sequence_number: Optional[int] = Field(default=None, ge=0)
    state_root: Optional[str] = None


class SnapshotOut(OpenCamelModel):
    snapshot_id: str
    sequence_number: Optional[int] = None


class SnapshotListOut(CamelModel):
    snapshots: list[SnapshotOut] = Field(default_factory=list)


class SnapshotCreatedOut(CamelModel):
    success: bool = True
    snapshot_id: str
