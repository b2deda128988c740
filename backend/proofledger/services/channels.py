"""Channel record helpers layered on the path store."""

from __future__ import annotations

from typing import Any

from ..errors import ValidationError
from ..store import CHANNEL_NAMESPACE, PathStore

# purpose: keep channel identifiers and on-chain hex values case-normalized at every boundary
# inputs: raw channel ids, channel record payloads, snapshot payloads
# outputs: lower-cased channel documents and snapshot listings
# status: pilot

CHANNEL_STATUSES = {"pending", "active", "frozen", "closed"}


def normalize_channel_id(channel_id: Any) -> str:
    """Return the canonical (lower-case) channel identifier."""

    if channel_id is None:
        raise ValidationError("Missing required field: channelId")
    normalized = str(channel_id).strip().lower()
    if not normalized:
        raise ValidationError("Missing required field: channelId")
    if "." in normalized or "/" in normalized:
        raise ValidationError("channelId may not contain path separators")
    return normalized


def normalize_hex(value: Any) -> Any:
    """Lower-case ``0x`` prefixed strings; other values pass through."""

    if isinstance(value, str) and value[:2] in {"0x", "0X"}:
        return value.lower()
    return value


def normalize_channel_record(data: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, list):
            normalized[key] = [normalize_hex(item) for item in value]
        else:
            normalized[key] = normalize_hex(value)
    if normalized.get("channelId") is not None:
        normalized["channelId"] = normalize_channel_id(normalized["channelId"])
    return normalized


def channel_path(channel_id: str, *parts: str) -> str:
    return ".".join([CHANNEL_NAMESPACE, normalize_channel_id(channel_id), *parts])


def get_channel(store: PathStore, channel_id: str) -> dict[str, Any] | None:
    """Look up a channel by id in any letter case."""

    normalized = normalize_channel_id(channel_id)
    channel = store.get(channel_path(normalized))
    if channel is None:
        # records written before ids were normalized may sit under mixed-case keys
        for key, candidate in (store.get(CHANNEL_NAMESPACE) or {}).items():
            if key.lower() == normalized:
                channel = candidate
                break
    if not isinstance(channel, dict):
        return None
    return {**channel, "channelId": channel.get("channelId") or normalized}


def list_channels(store: PathStore) -> list[dict[str, Any]]:
    channels = store.get(CHANNEL_NAMESPACE) or {}
    return [
        {**channel, "channelId": channel_id}
        for channel_id, channel in channels.items()
        if isinstance(channel, dict)
    ]


def list_active_channels(store: PathStore) -> list[dict[str, Any]]:
    return [channel for channel in list_channels(store) if channel.get("status") == "active"]


def _check_status(data: dict[str, Any]) -> None:
    status = data.get("status")
    if status is not None and status not in CHANNEL_STATUSES:
        raise ValidationError(f"Unknown channel status: {status}")


def save_channel(store: PathStore, channel_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Create or replace the channel record, keeping nested collections."""

    normalized = normalize_channel_id(channel_id)
    _check_status(data)
    record = normalize_channel_record(data)
    record["channelId"] = normalized
    store.update(channel_path(normalized), record)
    return get_channel(store, normalized) or record


def update_channel(store: PathStore, channel_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    normalized = normalize_channel_id(channel_id)
    _check_status(updates)
    store.update(channel_path(normalized), normalize_channel_record(updates))
    return get_channel(store, normalized) or {}


def save_snapshot(store: PathStore, channel_id: str, snapshot: dict[str, Any]) -> str:
    """Append a state snapshot and return its generated key."""

    sequence = snapshot.get("sequenceNumber")
    if sequence is not None and (not isinstance(sequence, int) or sequence < 0):
        raise ValidationError("sequenceNumber must be a non-negative integer")
    return store.push(channel_path(channel_id, "stateSnapshots"), snapshot)


def list_snapshots(store: PathStore, channel_id: str, limit: int = 10) -> list[dict[str, Any]]:
    """Return snapshots ordered by ``sequenceNumber`` descending."""

    snapshots = store.get(channel_path(channel_id, "stateSnapshots")) or {}
    ordered = sorted(
        ({**snapshot, "snapshotId": key} for key, snapshot in snapshots.items()),
        key=lambda entry: entry.get("sequenceNumber") or 0,
        reverse=True,
    )
    return ordered[: max(limit, 0)]


def latest_snapshot(store: PathStore, channel_id: str) -> dict[str, Any] | None:
    snapshots = list_snapshots(store, channel_id, 1)
    return snapshots[0] if snapshots else None
