"""Proof generation pipeline orchestration.

A job walks ``idle -> preparing-inputs -> synthesizing`` and then either the
proof branch (``proving -> preprocessing -> verifying -> extracting``) or the
``packaging`` branch, ending in ``completed`` or ``error``. Progress is
reported as :class:`ProgressEvent` values; the last event of every run is
exactly one ``completed`` or ``error`` event. The job's working directory is
removed once, whichever way the run ends.

The prover reads and writes one resource tree per install, so runs and bundle
verifications against the same install take turns.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
import shutil
import time
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from .. import bundles
from ..errors import PipelineError, ProverStageError, ValidationError
from ..locks import prover_tree_locks
from .failure_signatures import is_verified_output
from .prover_cli import ProverCli, assert_path_exists, resource_path

# purpose: drive the external prover through synthesis/proof stages with live progress
# inputs: channel id, previous state snapshot, signed transaction, block and contract facts
# outputs: zip archive bytes or a classified error, plus an ordered event stream
# status: pilot
# depends_on: backend.proofledger.services.prover_cli

_logger = logging.getLogger(__name__)

HEX_STRING = re.compile(r"0x[0-9a-fA-F]+")


class PipelineState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing-inputs"
    SYNTHESIZING = "synthesizing"
    PROVING = "proving"
    PREPROCESSING = "preprocessing"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    PACKAGING = "packaging"
    COMPLETED = "completed"
    ERROR = "error"


# stage -> (job state, wire step, progress message)
STAGE_PLAN: dict[str, tuple[PipelineState, str, str]] = {
    "synthesize": (PipelineState.SYNTHESIZING, "synthesizing", "Running L2 transaction synthesis..."),
    "prove": (PipelineState.PROVING, "proving", "Generating ZK proof..."),
    "preprocess": (PipelineState.PREPROCESSING, "verifying", "Preprocessing verifier inputs..."),
    "verify": (PipelineState.VERIFYING, "verifying", "Verifying proof..."),
    "extract": (PipelineState.EXTRACTING, "verifying", "Extracting proof bundle..."),
    "package": (PipelineState.PACKAGING, "synthesizing", "Packaging synthesizer output..."),
}

SYNTHESIZER_OUTPUT_FILES = (
    "instance.json",
    "state_snapshot.json",
    "placementVariables.json",
    "instance_description.json",
    "permutation.json",
)


@dataclass
class ProgressEvent:
    step: str
    message: str
    stage: Optional[str] = None
    error: Optional[str] = None
    artifact_bytes: Optional[bytes] = None

    @property
    def terminal(self) -> bool:
        return self.step in {"completed", "error"}

    def to_payload(self, include_artifact: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {"step": self.step, "message": self.message}
        if self.stage:
            payload["stage"] = self.stage
        if self.error is not None:
            payload["error"] = self.error
        if include_artifact and self.artifact_bytes is not None:
            payload["artifactBytes"] = base64.b64encode(self.artifact_bytes).decode("ascii")
        return payload

    def to_frame(self) -> str:
        return f"data: {json.dumps(self.to_payload())}\n\n"


@dataclass
class PipelineInputs:
    previous_state_snapshot: dict[str, Any]
    signed_tx_rlp: str
    block_info: dict[str, Any]
    contract_codes: Any
    include_proof: bool = False

    def validate(self) -> None:
        if not isinstance(self.previous_state_snapshot, dict):
            raise ValidationError("previousStateSnapshot must be an object")
        if not isinstance(self.signed_tx_rlp, str) or not HEX_STRING.fullmatch(self.signed_tx_rlp):
            raise ValidationError("signedTxRlp must be a 0x-prefixed hex string")
        if not isinstance(self.block_info, dict):
            raise ValidationError("blockInfo must be an object")


@dataclass
class PipelineOutcome:
    artifact: Optional[bytes] = None
    stage: Optional[str] = None
    error_detail: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.artifact is not None and self.error_detail is None


@dataclass
class PipelineJob:
    channel_id: str
    inputs: PipelineInputs
    job_id: str
    working_dir: str
    state: PipelineState = PipelineState.IDLE
    completed_stages: list[str] = field(default_factory=list)
    outcome: Optional[PipelineOutcome] = None

    @property
    def archive_name(self) -> str:
        return f"l2-transaction-channel-{self.channel_id}.zip"

    @property
    def archive_path(self) -> str:
        return os.path.join(self.working_dir, self.archive_name)


@dataclass
class VerificationReport:
    verified: bool
    message: str
    output: Optional[str] = None
    stderr: Optional[str] = None
    error: Optional[str] = None

    def as_response(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"verified": self.verified, "message": self.message}
        for key in ("output", "stderr", "error"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        return payload


Emitter = Callable[[ProgressEvent], Awaitable[None]]


class PipelineOrchestrator:
    def __init__(self, prover: ProverCli | None = None) -> None:
        self.prover = prover or ProverCli()

    @property
    def dist_root(self) -> str:
        return self.prover.dist_root

    @property
    def synthesizer_output_dir(self) -> str:
        return resource_path(self.dist_root, "synthesizer", "output")

    def create_job(self, channel_id: str, inputs: PipelineInputs) -> PipelineJob:
        inputs.validate()
        job_id = f"{int(time.time() * 1000)}-{uuid4().hex[:8]}"
        working_dir = os.path.join(
            self.dist_root, "outputs", f"channel-{channel_id}", f"transaction-{job_id}"
        )
        return PipelineJob(channel_id=channel_id, inputs=inputs, job_id=job_id, working_dir=working_dir)

    # -- running -------------------------------------------------------

    async def run(self, job: PipelineJob, emit: Emitter | None = None) -> PipelineOutcome:
        """Run every stage of ``job`` and report the terminal outcome."""

        async def publish(event: ProgressEvent) -> None:
            if emit is not None:
                await emit(event)

        if prover_tree_locks.locked(self.dist_root):
            _logger.info("job %s for channel %s waiting for the prover", job.job_id, job.channel_id)
        async with prover_tree_locks.hold(self.dist_root):
            return await self._run_stages(job, publish)

    async def _run_stages(self, job: PipelineJob, publish: Emitter) -> PipelineOutcome:
        try:
            job.state = PipelineState.PREPARING
            synth_args = self._prepare_inputs(job)
            await self._run_stage(job, "synthesize", synth_args, publish)
            if job.inputs.include_proof:
                await self._run_stage(job, "prove", ["--prove"], publish)
                await self._run_stage(job, "preprocess", ["--preprocess"], publish)
                result = await self._run_stage(job, "verify", ["--verify"], publish)
                if not is_verified_output(result.stdout):
                    raise ProverStageError(
                        "verify",
                        "Proof verification failed: the generated proof is invalid",
                        stderr=result.stderr,
                    )
                await self._run_stage(job, "extract", ["--extract-proof", job.archive_path], publish)
                if not os.path.isfile(job.archive_path):
                    raise ProverStageError("extract", f"Proof bundle was not produced at {job.archive_path}")
            else:
                await self._package(job, publish)

            with open(job.archive_path, "rb") as handle:
                artifact = handle.read()
            job.state = PipelineState.COMPLETED
            job.outcome = PipelineOutcome(artifact=artifact)
            await publish(
                ProgressEvent(
                    step="completed",
                    message="Proof generation completed successfully!",
                    artifact_bytes=artifact,
                )
            )
        except PipelineError as exc:
            job.outcome = self._fail(job, exc.stage, exc.detail, exc)
            await publish(self._error_event(job))
        except OSError as exc:
            # filesystem failures while staging inputs or reading the archive
            job.outcome = self._fail(job, job.state.value, str(exc), exc)
            await publish(self._error_event(job))
        except Exception as exc:
            _logger.exception("pipeline job %s hit an unexpected error", job.job_id)
            job.outcome = self._fail(job, job.state.value, f"Unexpected error: {exc}", exc)
            await publish(self._error_event(job))
        finally:
            self._cleanup(job)
        return job.outcome

    async def stream(self, job: PipelineJob) -> AsyncIterator[ProgressEvent]:
        """Run ``job`` in a producer task and yield its events in order.

        Closing the iterator early (a disconnected client) cancels the
        producer, which kills the running prover process group.
        """

        queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue()

        async def produce() -> None:
            try:
                await self.run(job, emit=queue.put)
            finally:
                queue.put_nowait(None)

        producer = asyncio.create_task(produce())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
                if event.terminal:
                    break
            await producer
        finally:
            if not producer.done():
                _logger.warning("progress consumer for job %s went away, cancelling", job.job_id)
                producer.cancel()
                with suppress(asyncio.CancelledError):
                    await producer

    # -- stages --------------------------------------------------------

    def _prepare_inputs(self, job: PipelineJob) -> list[str]:
        self.prover.check_installation()
        os.makedirs(job.working_dir, exist_ok=True)
        synth_dir = self.synthesizer_output_dir
        os.makedirs(synth_dir, exist_ok=True)

        documents = {
            "block_info.json": job.inputs.block_info,
            "contract_codes.json": job.inputs.contract_codes,
            "previous_state_snapshot.json": job.inputs.previous_state_snapshot,
        }
        paths: dict[str, str] = {}
        for name, document in documents.items():
            path = os.path.join(synth_dir, name)
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            paths[name] = path

        return [
            "--synthesize",
            "--tokamak-ch-tx",
            "--previous-state",
            paths["previous_state_snapshot.json"],
            "--transaction",
            job.inputs.signed_tx_rlp,
            "--block-info",
            paths["block_info.json"],
            "--contract-code",
            paths["contract_codes.json"],
        ]

    async def _run_stage(self, job: PipelineJob, stage: str, args: list[str], publish: Emitter):
        state, step, message = STAGE_PLAN[stage]
        job.state = state
        await publish(ProgressEvent(step=step, message=message, stage=stage))
        result = await self.prover.run(stage, args)
        job.completed_stages.append(stage)
        return result

    async def _package(self, job: PipelineJob, publish: Emitter) -> None:
        state, step, message = STAGE_PLAN["package"]
        job.state = state
        await publish(ProgressEvent(step=step, message=message, stage="package"))
        assert_path_exists(self.synthesizer_output_dir, "dir", stage="package")
        archive = bundles.pack_directory(self.synthesizer_output_dir)
        with open(job.archive_path, "wb") as handle:
            handle.write(archive)
        job.completed_stages.append("package")

    # -- terminal handling ---------------------------------------------

    @staticmethod
    def _fail(job: PipelineJob, stage: str, detail: str, exc: BaseException) -> PipelineOutcome:
        _logger.error("pipeline job %s for channel %s failed at %s: %s", job.job_id, job.channel_id, stage, detail)
        job.state = PipelineState.ERROR
        return PipelineOutcome(stage=stage, error_detail=detail, error=exc)

    @staticmethod
    def _error_event(job: PipelineJob) -> ProgressEvent:
        outcome = job.outcome
        return ProgressEvent(
            step="error",
            message="Proof generation failed",
            stage=outcome.stage if outcome else None,
            error=outcome.error_detail if outcome else None,
        )

    @staticmethod
    def _cleanup(job: PipelineJob) -> None:
        try:
            shutil.rmtree(job.working_dir)
        except FileNotFoundError:
            pass
        except OSError:
            _logger.warning("failed to clean up working directory %s", job.working_dir, exc_info=True)

    # -- standalone verification ----------------------------------------

    async def verify_bundle(self, bundle: bytes) -> VerificationReport:
        """Preprocess and verify an uploaded proof bundle."""

        files = bundles.unpack(bundle)
        for required in ("instance.json", "proof.json"):
            if bundles.find_member(files, required) is None:
                raise ValidationError(f"Missing required file in ZIP: {required}")
        self.prover.check_installation()

        async with prover_tree_locks.hold(self.dist_root):
            return await self._verify_staged(files)

    async def _verify_staged(self, files: dict[str, bytes]) -> VerificationReport:
        synth_dir = self.synthesizer_output_dir
        prove_dir = resource_path(self.dist_root, "prove", "output")
        for directory in (synth_dir, prove_dir, resource_path(self.dist_root, "preprocess", "output")):
            os.makedirs(directory, exist_ok=True)

        staged: list[str] = []
        try:
            for name in SYNTHESIZER_OUTPUT_FILES:
                data = bundles.find_member(files, name)
                if data is not None:
                    staged.append(self._stage_file(synth_dir, name, data))
            staged.append(self._stage_file(prove_dir, "proof.json", bundles.find_member(files, "proof.json")))

            try:
                await self.prover.run("preprocess", ["--preprocess"])
            except ProverStageError as exc:
                return VerificationReport(False, "Preprocess failed", error=exc.detail, stderr=exc.stderr)
            try:
                result = await self.prover.run("verify", ["--verify"])
            except ProverStageError as exc:
                return VerificationReport(False, "Proof verification failed", error=exc.detail, stderr=exc.stderr)

            verified = is_verified_output(result.stdout)
            return VerificationReport(
                verified=verified,
                message="Proof verification successful" if verified else "Proof verification failed - invalid proof",
                output=result.stdout,
                stderr=result.stderr or None,
            )
        finally:
            for path in staged:
                with suppress(FileNotFoundError):
                    os.remove(path)

    @staticmethod
    def _stage_file(directory: str, name: str, data: bytes) -> str:
        path = os.path.join(directory, name)
        with open(path, "wb") as handle:
            handle.write(data)
        return path
