"""Subprocess adapter for the external prover command line tool."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Sequence

from prometheus_client import Histogram

from ..errors import ProverStageError, ProverTimeoutError
from .failure_signatures import SignatureTable, default_signatures

# purpose: run one prover stage per call with a bounded timeout and classified failures
# inputs: stage name, argument vector, prover install location from env
# outputs: StageResult with captured stdout/stderr, or ProverStageError/ProverTimeoutError
# status: pilot

_logger = logging.getLogger(__name__)

STAGE_SECONDS = Histogram(
    "prover_stage_seconds",
    "Prover stage wall time",
    ["stage", "outcome"],
)

DEFAULT_STAGE_TIMEOUTS = {
    "synthesize": 300.0,
    "prove": 600.0,
    "preprocess": 300.0,
    "verify": 300.0,
    "extract": 300.0,
}

INSTALL_HINT = "Install Tokamak-zk-EVM first."


def prover_root() -> str:
    return os.getenv("PROVER_ROOT", os.path.join(os.getcwd(), "Tokamak-Zk-EVM"))


def prover_cli_path() -> str:
    return os.getenv("PROVER_CLI", os.path.join(prover_root(), "tokamak-cli"))


def prover_dist_root() -> str:
    return os.getenv("PROVER_DIST_ROOT", os.path.join(prover_root(), "dist"))


def library_path(dist_root: str) -> str:
    return os.path.join(dist_root, "backend-lib", "icicle", "lib")


def resource_path(dist_root: str, *parts: str) -> str:
    return os.path.join(dist_root, "resource", *parts)


def stage_timeout(stage: str) -> float:
    default = DEFAULT_STAGE_TIMEOUTS.get(stage, 300.0)
    return float(os.getenv(f"PROVER_{stage.upper()}_TIMEOUT", default))


def assert_path_exists(path: str, kind: str, *, stage: str = "preparing-inputs") -> None:
    """Fail the stage when a required prover file or directory is missing."""

    if not os.path.exists(path):
        raise ProverStageError(stage, f"Required {kind} not found: {path}. {INSTALL_HINT}")
    if kind == "file" and not os.path.isfile(path):
        raise ProverStageError(stage, f"Required file is not a file: {path}. {INSTALL_HINT}")
    if kind == "dir" and not os.path.isdir(path):
        raise ProverStageError(stage, f"Required directory is not a directory: {path}. {INSTALL_HINT}")


@dataclass
class StageResult:
    stage: str
    returncode: int
    stdout: str
    stderr: str
    duration: float


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, signal.SIGKILL)


class ProverCli:
    """Invoke the prover binary once per stage.

    Each process starts in its own session so a timeout or a cancelled
    request kills the prover and every helper it spawned.
    """

    def __init__(
        self,
        cli_path: str | None = None,
        dist_root: str | None = None,
        signatures: SignatureTable | None = None,
    ) -> None:
        self.cli_path = cli_path or prover_cli_path()
        self.dist_root = dist_root or prover_dist_root()
        self.signatures = signatures or default_signatures()

    def environment(self) -> dict[str, str]:
        env = dict(os.environ)
        lib_dir = library_path(self.dist_root)
        env["DYLD_LIBRARY_PATH"] = lib_dir
        env["LD_LIBRARY_PATH"] = os.pathsep.join(
            part for part in (lib_dir, os.environ.get("LD_LIBRARY_PATH", "")) if part
        )
        return env

    def check_installation(self) -> None:
        assert_path_exists(self.cli_path, "file")
        assert_path_exists(self.dist_root, "dir")

    async def run(
        self,
        stage: str,
        args: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> StageResult:
        limit = timeout if timeout is not None else stage_timeout(stage)
        _logger.info("executing prover %s: %s %s", stage, self.cli_path, " ".join(args))
        started = time.monotonic()
        outcome = "error"
        try:
            process = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                cwd=self.dist_root,
                env=self.environment(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            # ValueError: arguments the OS cannot pass, such as embedded null bytes
            raise ProverStageError(stage, f"Failed to launch prover: {exc}") from exc

        try:
            try:
                raw_stdout, raw_stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
            except asyncio.TimeoutError as exc:
                _kill_process_group(process)
                await process.wait()
                outcome = "timeout"
                _logger.error("prover %s timed out after %ss", stage, limit)
                raise ProverTimeoutError(stage, limit) from exc
            except asyncio.CancelledError:
                _kill_process_group(process)
                with suppress(ProcessLookupError):
                    await process.wait()
                outcome = "cancelled"
                _logger.warning("prover %s cancelled, process group %s killed", stage, process.pid)
                raise

            stdout = raw_stdout.decode("utf-8", errors="replace")
            stderr = raw_stderr.decode("utf-8", errors="replace")
            if stdout:
                _logger.info("prover %s stdout: %s", stage, stdout)
            if stderr:
                _logger.warning("prover %s stderr: %s", stage, stderr)

            detail = self.signatures.classify(stderr)
            if detail is not None:
                _logger.error("prover %s reported failure: %s", stage, detail)
                raise ProverStageError(stage, detail, stderr=stderr)
            if process.returncode != 0:
                detail = self.signatures.describe_failure(stderr, process.returncode)
                _logger.error("prover %s exited with %s: %s", stage, process.returncode, detail)
                raise ProverStageError(stage, detail, stderr=stderr)

            outcome = "ok"
            return StageResult(
                stage=stage,
                returncode=process.returncode,
                stdout=stdout,
                stderr=stderr,
                duration=time.monotonic() - started,
            )
        finally:
            STAGE_SECONDS.labels(stage, outcome).observe(time.monotonic() - started)
