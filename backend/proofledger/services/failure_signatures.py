"""Known prover failure signatures and the text classification built on them."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

# purpose: recognize prover failures that only show up as error-stream text
# inputs: captured stderr/stdout text from a prover stage
# outputs: extracted error detail strings or verification verdicts
# status: pilot

DEFAULT_EXTRACT_PATTERN = r"error: (.+?)(?:\n|$)"
DEFAULT_FALLBACK_DETAIL = "Synthesizer execution failed"


@dataclass(frozen=True)
class FailureSignature:
    """A failure is signalled when every marker appears in the text."""

    name: str
    markers: tuple[str, ...]

    def matches(self, text: str) -> bool:
        return all(marker in text for marker in self.markers)


@dataclass
class SignatureTable:
    signatures: list[FailureSignature] = field(default_factory=list)
    extract_pattern: str = DEFAULT_EXTRACT_PATTERN
    fallback_detail: str = DEFAULT_FALLBACK_DETAIL

    def register(self, signature: FailureSignature) -> None:
        self.signatures.append(signature)

    def match(self, text: str | None) -> FailureSignature | None:
        if not text:
            return None
        for signature in self.signatures:
            if signature.matches(text):
                return signature
        return None

    def extract(self, text: str, signature: FailureSignature | None = None) -> str:
        """Pull the first error fragment out of ``text``."""

        found = re.search(self.extract_pattern, text)
        if found and found.group(1).strip():
            return found.group(1).strip()
        if signature is not None:
            for line in text.splitlines():
                if signature.markers[0] in line:
                    return line.strip()
        return self.fallback_detail

    def classify(self, text: str | None) -> str | None:
        """Return the error detail when ``text`` carries a known signature."""

        signature = self.match(text)
        if signature is None:
            return None
        return self.extract(text or "", signature)

    def describe_failure(self, stderr: str | None, returncode: int | None) -> str:
        """Best-effort detail for a failed stage with no known signature."""

        text = stderr or ""
        if "Transaction failed:" in text:
            found = re.search(r"Transfer failed: (.+)", text)
            if found:
                return found.group(1).strip()
        found = re.search(r"error: (.+)", text)
        if found:
            return found.group(1).strip()
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if lines:
            return lines[-1]
        return f"prover exited with status {returncode}"


def default_signatures() -> SignatureTable:
    return SignatureTable(
        [
            FailureSignature("step_error", ("Synthesizer: step error:",)),
            FailureSignature("handler_error", ("Synthesizer: Handler:",)),
            FailureSignature("output_mismatch", ("Synthesizer:", "Output data mismatch")),
            FailureSignature("synthesizer_error", ("Synthesizer:", "error:")),
            FailureSignature("undefined_handler", ("Undefined synthesizer handler",)),
        ]
    )


VERIFIED_PHRASES: tuple[str, ...] = ("Verify: verify output => true", "✓")
VERIFIED_PHRASES_CASELESS: tuple[str, ...] = ("success",)


def is_verified_output(
    stdout: str | None,
    phrases: Iterable[str] = VERIFIED_PHRASES,
    caseless: Iterable[str] = VERIFIED_PHRASES_CASELESS,
) -> bool:
    """True when verifier output contains one of the accepted verdict phrases."""

    text = stdout or ""
    if any(phrase in text for phrase in phrases):
        return True
    lowered = text.lower()
    return any(phrase in lowered for phrase in caseless)
