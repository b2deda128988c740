"""Proof submission, artifact retrieval and deletion on top of the registry."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Any

from .. import bundles, storage
from ..errors import NotFoundError, PermissionDenied, ValidationError
from ..locks import channel_locks
from ..store import PathStore, now_ms
from . import proof_registry
from .channels import get_channel, normalize_channel_id
from .sequence_allocator import SequenceAllocator, current_sequence_number, format_proof_ids

# purpose: accept reserved proof bundles, persist their bytes and manage their lifetime
# inputs: channel id, reserved slot, uploaded zip payload, caller identity
# outputs: submitted proof records, artifact bytes, deletion locations
# status: pilot
# depends_on: backend.proofledger.storage

_logger = logging.getLogger(__name__)

DEFAULT_MAX_BUNDLE_BYTES = 500 * 1024 * 1024
BUNDLE_MIME_TYPE = "application/zip"


def max_bundle_bytes() -> int:
    return int(os.getenv("MAX_PROOF_BUNDLE_BYTES", DEFAULT_MAX_BUNDLE_BYTES))


def submit_proof(
    store: PathStore,
    channel_id: str,
    data: bytes,
    *,
    sequence_number: int,
    sub_number: int,
    submitter: str,
    storage_proof_id: str,
    file_name: str | None = None,
    allocator: SequenceAllocator | None = None,
) -> dict[str, Any]:
    """Record a proof bundle for a slot previously handed out by ``reserve``."""

    channel = normalize_channel_id(channel_id)
    if not submitter:
        raise ValidationError("Missing required field: submitter")
    if not data:
        raise ValidationError("Proof bundle is empty")
    limit = max_bundle_bytes()
    if len(data) > limit:
        raise ValidationError(f"Proof bundle exceeds the {limit} byte limit")
    proof_id, expected_storage_id = format_proof_ids(sequence_number, sub_number)
    if storage_proof_id != expected_storage_id:
        raise ValidationError(
            f"storageProofId {storage_proof_id!r} does not match reserved slot {expected_storage_id!r}"
        )
    bundles.validate_proof_bundle(data)

    allocator = allocator or SequenceAllocator(store)
    # same lock as reserve and adjudicate: the slot cannot settle between check and write
    with allocator.locks.hold(channel):
        if not allocator.was_issued(channel, sequence_number, sub_number):
            raise ValidationError(
                f"Slot {sequence_number}-{sub_number} was not reserved for channel {channel}"
            )
        current = current_sequence_number(store, channel)
        if sequence_number != current:
            raise ValidationError(
                f"Sequence {sequence_number} is not open for submissions (current is {current})"
            )
        try:
            collection, _ = proof_registry.find_proof(store, channel, storage_proof_id)
        except NotFoundError:
            pass
        else:
            raise ValidationError(f"Proof {storage_proof_id} already recorded in {collection} proofs")

        name = storage.safe_filename(file_name or "", f"{storage_proof_id}.zip")
        file_path, size = storage.save_binary_payload(
            data,
            name,
            content_type=BUNDLE_MIME_TYPE,
            namespace=f"channels/{channel}/proofs",
        )
        submitted_at = now_ms()
        record = {
            "proofId": proof_id,
            "sequenceNumber": sequence_number,
            "subNumber": sub_number,
            "status": "submitted",
            "submitter": submitter,
            "submittedAt": submitted_at,
            "artifact": {
                "filePath": file_path,
                "fileName": name,
                "mimeType": BUNDLE_MIME_TYPE,
                "size": size,
                "sha256": storage.checksum(data),
                "uploadedAt": submitted_at,
            },
        }
        proof_registry.put_proof(store, channel, "submitted", record, key=storage_proof_id)
    _logger.info("channel %s: %s submitted by %s (%d bytes)", channel, proof_id, submitter, size)
    return {**record, "key": storage_proof_id}


def _artifact_reference(proof: dict[str, Any]) -> dict[str, Any]:
    # records written by older dashboards carry the reference under zipFile
    reference = proof.get("artifact") or proof.get("zipFile")
    if not isinstance(reference, dict):
        raise NotFoundError("ZIP file content not found")
    return reference


def load_artifact(
    store: PathStore,
    channel_id: str,
    collection: str,
    key: str,
) -> tuple[bytes, str]:
    """Return ``(bytes, file name)`` for a proof's stored bundle."""

    proof = proof_registry.get_proof(store, channel_id, collection, key)
    reference = _artifact_reference(proof)
    file_name = reference.get("fileName") or f"{key}.zip"

    if reference.get("filePath"):
        data = storage.load_binary_payload(reference["filePath"])
        expected = reference.get("sha256")
        if expected and storage.checksum(data) != expected:
            _logger.error("artifact checksum mismatch for %s/%s", channel_id, key)
            raise NotFoundError("Stored artifact failed its checksum")
        return data, file_name

    if reference.get("content"):
        try:
            return base64.b64decode(reference["content"], validate=True), file_name
        except (binascii.Error, ValueError) as exc:
            raise NotFoundError("Stored artifact content is not valid base64") from exc

    raise NotFoundError("ZIP file content not found")


def delete_proof(
    store: PathStore,
    channel_id: str,
    key: str,
    *,
    user_address: str,
    is_leader: bool = False,
) -> str:
    """Delete ``key`` from whichever collection holds it; return that collection.

    Leaders may delete any proof. The caller counts as leader when
    ``is_leader`` is set or when it matches the leader stored on the channel.
    Submitters may withdraw their own proof only while it is still pending.
    """

    if not user_address:
        raise ValidationError("Missing required field: userAddress")
    channel = normalize_channel_id(channel_id)
    record = get_channel(store, channel) or {}
    stored_leader = record.get("leader")
    if isinstance(stored_leader, str) and stored_leader.lower() == user_address.lower():
        is_leader = True
    with channel_locks.hold(channel):
        collection, proof = proof_registry.find_proof(store, channel, key)
        if not is_leader:
            if (proof.get("submitter") or "").lower() != user_address.lower():
                raise PermissionDenied("You can only delete your own proofs")
            if collection != "submitted":
                raise PermissionDenied(f"Cannot delete {collection} proofs. Only pending proofs can be deleted.")
        proof_registry.delete_proof(store, channel, collection, key)

    reference = proof.get("artifact")
    if isinstance(reference, dict) and reference.get("filePath"):
        storage.delete_binary_payload(reference["filePath"])
    _logger.info("channel %s: proof %s deleted from %s by %s", channel, key, collection, user_address)
    return collection
