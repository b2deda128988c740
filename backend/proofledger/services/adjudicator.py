"""Verification adjudication: promote one submission, reject its siblings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..locks import KeyedLock, channel_locks
from ..store import PathStore, now_ms
from . import proof_registry
from .channels import channel_path, normalize_channel_id

# purpose: run the submitted -> verified/rejected transition for one sequence number
# inputs: channel id, winning proof key, sequence number, verifier identity
# outputs: AdjudicationResult with the verified record and rejected sibling count
# status: pilot

_logger = logging.getLogger(__name__)

REJECTION_REASON = "superseded by a verified sibling"


@dataclass
class AdjudicationResult:
    verified_proof: dict[str, Any]
    rejected_count: int

    def as_response(self) -> dict[str, Any]:
        return {
            "verifiedProof": {
                "proofId": self.verified_proof.get("proofId") or self.verified_proof.get("key"),
                "sequenceNumber": self.verified_proof.get("sequenceNumber"),
            },
            "rejectedCount": self.rejected_count,
        }


def intent_path(channel_id: str, sequence_number: int | None = None) -> str:
    if sequence_number is None:
        return channel_path(channel_id, "adjudications")
    return channel_path(channel_id, "adjudications", str(sequence_number))


class VerificationAdjudicator:
    """Applies adjudications through a durable intent record.

    The intent carries every record to write, so each step (write the
    winner, write the rejections, clear ``submitted``) is a keyed ``set`` or
    ``delete`` that can be replayed after a crash without duplicating data.
    """

    def __init__(self, store: PathStore, locks: KeyedLock = channel_locks) -> None:
        self.store = store
        self.locks = locks

    def adjudicate(
        self,
        channel_id: str,
        winning_key: str,
        sequence_number: int,
        verifier: str,
    ) -> AdjudicationResult:
        channel = normalize_channel_id(channel_id)
        if not winning_key:
            raise ValidationError("Missing required field: proofKey")
        if not verifier:
            raise ValidationError("Missing required field: verifierAddress")
        if isinstance(sequence_number, bool) or not isinstance(sequence_number, int) or sequence_number < 1:
            raise ValidationError("sequenceNumber must be a positive integer")

        with self.locks.hold(channel):
            self.replay_pending(channel)

            submitted = proof_registry.list_proofs(self.store, channel, "submitted")
            winner = next((proof for proof in submitted if proof["key"] == winning_key), None)
            if winner is None:
                raise NotFoundError("Proof not found in submitted proofs")
            if winner.get("sequenceNumber") != sequence_number:
                raise ValidationError(
                    f"Proof {winning_key} belongs to sequence {winner.get('sequenceNumber')}, "
                    f"not {sequence_number}"
                )

            siblings = [proof for proof in submitted if proof.get("sequenceNumber") == sequence_number]
            decided_at = now_ms()
            verified_record = {
                **winner,
                "status": "verified",
                "verifiedAt": decided_at,
                "verifiedBy": verifier,
            }
            rejected_records = {
                proof["key"]: {
                    **proof,
                    "status": "rejected",
                    "rejectedAt": decided_at,
                    "rejectedBy": verifier,
                    "reason": REJECTION_REASON,
                }
                for proof in siblings
                if proof["key"] != winning_key
            }
            intent = {
                "status": "pending",
                "sequenceNumber": sequence_number,
                "winnerKey": winning_key,
                "verifiedRecord": verified_record,
                "rejectedRecords": rejected_records,
                "siblingKeys": [proof["key"] for proof in siblings],
                "verifier": verifier,
            }
            self.store.set(intent_path(channel, sequence_number), intent)
            self._apply(channel, sequence_number, intent)

        _logger.info(
            "channel %s sequence %s: verified %s, rejected %d",
            channel,
            sequence_number,
            winning_key,
            len(rejected_records),
        )
        return AdjudicationResult(verified_record, len(rejected_records))

    def replay_pending(self, channel_id: str) -> int:
        """Finish any adjudication whose intent was recorded but not applied."""

        intents = self.store.get(intent_path(channel_id)) or {}
        # sequence keys are strings; replay in numeric order
        pending = sorted(
            ((int(sequence), intent) for sequence, intent in intents.items() if str(sequence).isdigit()),
            key=lambda item: item[0],
        )
        replayed = 0
        for sequence, intent in pending:
            if not isinstance(intent, dict) or intent.get("status") != "pending":
                continue
            _logger.warning("replaying pending adjudication for channel %s sequence %s", channel_id, sequence)
            self._apply(channel_id, sequence, intent)
            replayed += 1
        return replayed

    def _apply(self, channel_id: str, sequence_number: int, intent: dict[str, Any]) -> None:
        winner_key = intent["winnerKey"]
        proof_registry.put_proof(
            self.store, channel_id, "verified", intent["verifiedRecord"], key=winner_key
        )
        for key, record in (intent.get("rejectedRecords") or {}).items():
            proof_registry.put_proof(self.store, channel_id, "rejected", record, key=key)
        for key in intent.get("siblingKeys") or [winner_key]:
            proof_registry.delete_proof(self.store, channel_id, "submitted", key)
        self.store.update(intent_path(channel_id, sequence_number), {"status": "applied"})
