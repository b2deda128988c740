"""Schemas for proof reservation, records and adjudication."""

# purpose: describe the proof lifecycle request and response bodies
# status: pilot

from typing import Literal, Optional

from pydantic import Field

from .common import CamelModel, OpenCamelModel

ProofCollection = Literal["submitted", "verified", "rejected"]


class ReservationOut(CamelModel):
    sequence_number: int
    sub_number: int
    proof_id: str
    storage_proof_id: str


class ArtifactReference(OpenCamelModel):
    file_path: Optional[str] = None
    content: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    sha256: Optional[str] = None
    uploaded_at: Optional[int] = None


class ProofRecord(OpenCamelModel):
    key: str
    sequence_number: Optional[int] = None
    sub_number: Optional[int] = None
    proof_id: Optional[str] = None
    status: Optional[str] = None
    submitter: Optional[str] = None
    submitted_at: Optional[int] = None
    verified_at: Optional[int] = None
    verified_by: Optional[str] = None
    rejected_at: Optional[int] = None
    rejected_by: Optional[str] = None
    reason: Optional[str] = None
    artifact: Optional[ArtifactReference] = None


class ProofListOut(CamelModel):
    success: bool = True
    data: list[ProofRecord] = Field(default_factory=list)


class ProofSubmissionOut(CamelModel):
    success: bool = True
    key: str
    proof: ProofRecord


class ProofDeleteOut(CamelModel):
    success: bool = True
    message: str
    deleted_proof_key: str
    location: str


class AdjudicationRequest(CamelModel):
    sequence_number: int
    verifier_address: str


class VerifiedProofRef(CamelModel):
    proof_id: Optional[str] = None
    sequence_number: Optional[int] = None


class AdjudicationOut(CamelModel):
    success: bool = True
    message: str = "Proof verified successfully"
    verified_proof: VerifiedProofRef
    rejected_count: int


class ArtifactContentOut(CamelModel):
    success: bool = True
    content: str
    file_name: Optional[str] = None
    size: Optional[int] = None
