"""Schemas for proof generation and standalone verification requests."""

# purpose: carry the caller-supplied chain facts the prover needs
# status: pilot

from typing import Any, Optional

from pydantic import Field

from .common import CamelModel


class SynthesizeRequest(CamelModel):
    channel_id: str
    previous_state_snapshot: dict[str, Any]
    signed_tx_rlp: str
    block_info: dict[str, Any]
    contract_codes: Any = Field(default_factory=list)
    include_proof: bool = False


class VerifyBundleRequest(CamelModel):
    proof_zip_base64: str


class VerificationOut(CamelModel):
    verified: bool
    message: str
    output: Optional[str] = None
    stderr: Optional[str] = None
    error: Optional[str] = None
