"""Error taxonomy shared by the proof lifecycle services."""

from __future__ import annotations

# purpose: give routes and the pipeline one hierarchy to translate into responses
# status: pilot
# depends_on: backend.proofledger.services


class ProofLedgerError(RuntimeError):
    """Base error for proof lifecycle flows."""


class ValidationError(ProofLedgerError):
    """Raised when a request is missing or carries malformed fields."""


class NotFoundError(ProofLedgerError):
    """Raised when a referenced proof or channel collection does not exist."""


class PermissionDenied(ProofLedgerError):
    """Raised when the caller may not perform the requested mutation."""


class StoreIOError(ProofLedgerError):
    """Raised when the path store fails to read or persist a document."""


class PipelineError(ProofLedgerError):
    """Base error for proof generation pipeline failures."""

    def __init__(self, stage: str, detail: str) -> None:
        super().__init__(f"{stage}: {detail}")
        self.stage = stage
        self.detail = detail


class ProverStageError(PipelineError):
    """Raised when a prover stage fails or its output matches a failure signature."""

    def __init__(self, stage: str, detail: str, *, stderr: str | None = None) -> None:
        super().__init__(stage, detail)
        self.stderr = stderr


class ProverTimeoutError(ProverStageError):
    """Raised when a prover stage exceeds its bounded timeout."""

    def __init__(self, stage: str, timeout: float) -> None:
        super().__init__(stage, f"stage timed out after {timeout:g} seconds")
        self.timeout = timeout
