"""Proof bundle archive codec and structural validation."""

from __future__ import annotations

import io
import json
import os
import zipfile
from pathlib import PurePosixPath
from typing import Any

from .errors import ValidationError

# purpose: convert named-file bundles to/from zip bytes and check submission shape
# inputs: zip payloads, directories of prover output, {name: bytes} mappings
# outputs: zip bytes, {relative path: bytes} mappings, parsed bundle documents
# status: pilot

MAX_BUNDLE_DEPTH = 3

REQUIRED_SHAPES: dict[str, dict[str, type]] = {
    "instance.json": {
        "a_pub_user": list,
        "a_pub_block": list,
        "a_pub_function": list,
    },
    "proof.json": {
        "proof_entries_part1": list,
        "proof_entries_part2": list,
    },
    "state_snapshot.json": {
        "stateRoot": str,
        "contractAddress": str,
        "registeredKeys": list,
        "storageEntries": list,
    },
}


def pack_files(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in sorted(files.items()):
            archive.writestr(name, data)
    return buffer.getvalue()


def pack_directory(source_dir: str, extra_files: dict[str, bytes] | None = None) -> bytes:
    """Zip every regular file under ``source_dir`` keyed by its relative path."""

    files: dict[str, bytes] = {}
    for root, _dirs, names in os.walk(source_dir):
        for name in names:
            full_path = os.path.join(root, name)
            if not os.path.isfile(full_path):
                continue
            relative = os.path.relpath(full_path, source_dir).replace(os.sep, "/")
            with open(full_path, "rb") as handle:
                files[relative] = handle.read()
    files.update(extra_files or {})
    return pack_files(files)


def unpack(data: bytes) -> dict[str, bytes]:
    """Return ``{relative path: bytes}`` for every file entry in the archive."""

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ValidationError("Proof bundle is not a valid zip archive") from exc
    files: dict[str, bytes] = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            path = PurePosixPath(info.filename)
            if path.is_absolute() or ".." in path.parts:
                raise ValidationError(f"Unsafe path in proof bundle: {info.filename}")
            files[str(path)] = archive.read(info)
    return files


def find_member(files: dict[str, bytes], name: str, max_depth: int = MAX_BUNDLE_DEPTH) -> bytes | None:
    """Return the shallowest file called ``name`` within ``max_depth`` directories."""

    candidates = [
        (len(PurePosixPath(path).parts), path)
        for path in files
        if PurePosixPath(path).name == name and len(PurePosixPath(path).parts) - 1 <= max_depth
    ]
    if not candidates:
        return None
    return files[min(candidates)[1]]


def validate_proof_bundle(data: bytes) -> dict[str, dict[str, Any]]:
    """Check the submission archive carries the documents the verifier needs.

    Returns the parsed documents keyed by file name.
    """

    files = unpack(data)
    documents: dict[str, dict[str, Any]] = {}
    for name, fields in REQUIRED_SHAPES.items():
        raw = find_member(files, name)
        if raw is None:
            raise ValidationError(f"Missing required file in proof bundle: {name}")
        try:
            document = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError(f"{name} is not valid JSON") from exc
        if not isinstance(document, dict):
            raise ValidationError(f"{name} must contain a JSON object")
        for field, expected in fields.items():
            if not isinstance(document.get(field), expected):
                kind = "an array" if expected is list else "a string"
                raise ValidationError(f"{name} field {field} must be {kind}")
        documents[name] = document
    return documents
