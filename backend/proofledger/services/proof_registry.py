"""CRUD over a channel's submitted, verified and rejected proof collections."""

from __future__ import annotations

from typing import Any

from ..errors import NotFoundError, ValidationError
from ..store import PathStore, split_path
from .channels import channel_path

# purpose: single access point for proof records grouped by lifecycle status
# inputs: channel identifiers, collection names, proof record payloads
# outputs: proof records annotated with their collection key
# status: pilot

COLLECTIONS = ("submitted", "verified", "rejected")


def collection_path(channel_id: str, collection: str, *parts: str) -> str:
    if collection not in COLLECTIONS:
        raise ValidationError(f"Unknown proof collection: {collection}")
    return channel_path(channel_id, f"{collection}Proofs", *parts)


def _check_key(key: str) -> str:
    if not key or len(split_path(key)) != 1 or split_path(key)[0] != key:
        raise ValidationError(f"Invalid proof key: {key!r}")
    return key


def list_proofs(store: PathStore, channel_id: str, collection: str = "submitted") -> list[dict[str, Any]]:
    """Return every proof in ``collection`` with its ``key`` attached."""

    records = store.get(collection_path(channel_id, collection)) or {}
    return [{**record, "key": key} for key, record in records.items() if isinstance(record, dict)]


def get_proof(store: PathStore, channel_id: str, collection: str, key: str) -> dict[str, Any]:
    record = store.get(collection_path(channel_id, collection, _check_key(key)))
    if not isinstance(record, dict):
        raise NotFoundError(f"Proof {key} not found in {collection} proofs")
    return {**record, "key": key}


def find_proof(store: PathStore, channel_id: str, key: str) -> tuple[str, dict[str, Any]]:
    """Locate ``key`` in whichever collection currently holds it."""

    for collection in COLLECTIONS:
        record = store.get(collection_path(channel_id, collection, _check_key(key)))
        if isinstance(record, dict):
            return collection, {**record, "key": key}
    raise NotFoundError(f"Proof {key} not found")


def put_proof(
    store: PathStore,
    channel_id: str,
    collection: str,
    record: dict[str, Any],
    key: str | None = None,
) -> str:
    """Write ``record`` under ``key`` (or a generated key) and return the key."""

    payload = {name: value for name, value in record.items() if name != "key"}
    if key is None:
        return store.push(collection_path(channel_id, collection), payload)
    store.set(collection_path(channel_id, collection, _check_key(key)), payload)
    return key


def delete_proof(store: PathStore, channel_id: str, collection: str, key: str) -> None:
    store.delete(collection_path(channel_id, collection, _check_key(key)))
