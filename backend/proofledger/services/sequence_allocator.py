"""Reservation of ``(sequenceNumber, subNumber)`` slots within a channel."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..locks import KeyedLock, channel_locks
from ..store import PathStore
from .channels import channel_path, normalize_channel_id
from .proof_registry import collection_path

# purpose: hand out unique proof slots per channel with a persisted monotonic counter
# inputs: channel identifier
# outputs: Reservation carrying the slot and its display/storage identifiers
# status: pilot


@dataclass(frozen=True)
class Reservation:
    sequence_number: int
    sub_number: int
    proof_id: str
    storage_proof_id: str

    def as_response(self) -> dict[str, Any]:
        return {
            "sequenceNumber": self.sequence_number,
            "subNumber": self.sub_number,
            "proofId": self.proof_id,
            "storageProofId": self.storage_proof_id,
        }


def format_proof_ids(sequence_number: int, sub_number: int) -> tuple[str, str]:
    """Return the display id and storage-safe id for a slot."""

    if sub_number > 1:
        return (
            f"proof#{sequence_number}-{sub_number}",
            f"proof-{sequence_number}-{sub_number}",
        )
    return f"proof#{sequence_number}", f"proof-{sequence_number}"


def counter_path(channel_id: str, sequence_number: int) -> str:
    return channel_path(channel_id, "sequenceCounters", str(sequence_number))


def _read_counter(store: PathStore, channel_id: str, sequence_number: int) -> int | None:
    stored = store.get(counter_path(channel_id, sequence_number))
    if isinstance(stored, dict):
        stored = stored.get("subNumber")
    if isinstance(stored, bool) or not isinstance(stored, int):
        return None
    return stored


def current_sequence_number(store: PathStore, channel_id: str) -> int:
    """The slot being contested: verified proof count plus one."""

    verified = store.get(collection_path(channel_id, "verified")) or {}
    return len(verified) + 1


def _max_submitted_sub_number(store: PathStore, channel_id: str, sequence_number: int) -> int:
    submitted = store.get(collection_path(channel_id, "submitted")) or {}
    highest = 0
    for record in submitted.values():
        if not isinstance(record, dict) or record.get("sequenceNumber") != sequence_number:
            continue
        sub = record.get("subNumber") or 1
        if isinstance(sub, int) and sub > highest:
            highest = sub
    return highest


class SequenceAllocator:
    """Serializes reservations per channel around the counter read-modify-write."""

    def __init__(self, store: PathStore, locks: KeyedLock = channel_locks) -> None:
        self.store = store
        self.locks = locks

    def reserve(self, channel_id: str) -> Reservation:
        channel = normalize_channel_id(channel_id)
        with self.locks.hold(channel):
            sequence_number = current_sequence_number(self.store, channel)
            max_sub = _max_submitted_sub_number(self.store, channel, sequence_number)
            stored = _read_counter(self.store, channel, sequence_number)
            # a counter lagging behind recorded submissions is healed from the data
            effective = max_sub if stored is None or stored < max_sub else stored
            sub_number = effective + 1
            self.store.set(
                counter_path(channel, sequence_number),
                {"subNumber": sub_number},
            )
        proof_id, storage_proof_id = format_proof_ids(sequence_number, sub_number)
        return Reservation(sequence_number, sub_number, proof_id, storage_proof_id)

    def was_issued(self, channel_id: str, sequence_number: int, sub_number: int) -> bool:
        """True when ``(sequence_number, sub_number)`` came out of ``reserve``."""

        channel = normalize_channel_id(channel_id)
        if sequence_number < 1 or sub_number < 1:
            return False
        stored = _read_counter(self.store, channel, sequence_number)
        return stored is not None and sub_number <= stored
