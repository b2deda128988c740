"""Pydantic schemas consolidating backend API contracts."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: pilot

from .channels import (
    ChannelIn,
    ChannelOut,
    SnapshotCreatedOut,
    SnapshotIn,
    SnapshotListOut,
    SnapshotOut,
)
from .pipeline import SynthesizeRequest, VerificationOut, VerifyBundleRequest
from .proofs import (
    AdjudicationOut,
    AdjudicationRequest,
    ArtifactContentOut,
    ArtifactReference,
    ProofCollection,
    ProofDeleteOut,
    ProofListOut,
    ProofRecord,
    ProofSubmissionOut,
    ReservationOut,
    VerifiedProofRef,
)
from .store import PathReadOut, PathWriteOut, PathWriteRequest
