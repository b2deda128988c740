"""Tree-structured key/value store addressed by dotted paths."""

from __future__ import annotations

import copy
import logging
import re
import secrets
import string
import time
from collections.abc import Mapping
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .database import SessionLocal
from .errors import StoreIOError, ValidationError
from .locks import KeyedLock

# purpose: persist channel documents as timestamped nested mappings
# inputs: dot- or slash-delimited paths, JSON-compatible values
# outputs: values read back from the shard documents, generated push keys
# status: pilot
# depends_on: backend.proofledger.models.StoreDocument

_logger = logging.getLogger(__name__)

CHANNEL_NAMESPACE = "channels"
_PATH_SPLIT = re.compile(r"[./]")
_KEY_ALPHABET = string.ascii_lowercase + string.digits


def split_path(path: str) -> list[str]:
    """Return the non-empty segments of a dotted or slashed path."""

    return [part for part in _PATH_SPLIT.split(path or "") if part]


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_push_key() -> str:
    """Millisecond timestamp followed by seven random base-36 characters."""

    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(7))
    return f"{now_ms()}{suffix}"


def _stamp(value: Any, field: str) -> Any:
    # scalars have nowhere to carry metadata and are stored as-is
    if isinstance(value, Mapping):
        return {**value, field: now_ms()}
    return value


def _walk(document: Any, parts: list[str]) -> Any:
    current = document
    for part in parts:
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return None
    return current


def _ensure_parent(document: dict[str, Any], parts: list[str]) -> dict[str, Any]:
    """Create intermediate mappings for ``parts`` and return the deepest one."""

    current = document
    for part in parts:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    return current


class PathStore:
    """Path-addressed store sharded into one SQL row per channel.

    ``channels.<id>...`` lives in shard ``channels/<id>``; any other top-level
    namespace ``<ns>...`` lives in shard ``<ns>``. Every write reads the shard
    document, mutates a copy and writes it back before returning, holding the
    shard's lock for the whole sequence.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self._shard_locks = KeyedLock()

    # -- addressing -----------------------------------------------------

    @staticmethod
    def _resolve(parts: list[str]) -> tuple[str, list[str]]:
        if not parts:
            raise ValidationError("Path must address a namespace")
        if parts[0] == CHANNEL_NAMESPACE:
            if len(parts) < 2:
                raise ValidationError("Path must address a single channel")
            return f"{CHANNEL_NAMESPACE}/{parts[1]}", parts[2:]
        return parts[0], parts[1:]

    # -- shard io -------------------------------------------------------

    def _load_shards(self, prefix: str | None = None) -> dict[str, Any]:
        session = self._session_factory()
        try:
            query = session.query(models.StoreDocument)
            if prefix is not None:
                query = query.filter(models.StoreDocument.shard.like(f"{prefix}%"))
            return {row.shard: copy.deepcopy(row.document) for row in query.all()}
        except SQLAlchemyError as exc:
            _logger.exception("path store read failed")
            raise StoreIOError("Failed to read path store") from exc
        finally:
            session.close()

    def _read_shard(self, shard: str) -> Any:
        session = self._session_factory()
        try:
            row = session.get(models.StoreDocument, shard)
            return copy.deepcopy(row.document) if row is not None else None
        except SQLAlchemyError as exc:
            _logger.exception("path store read failed for shard %s", shard)
            raise StoreIOError(f"Failed to read shard {shard}") from exc
        finally:
            session.close()

    def _mutate(self, shard: str, mutator: Callable[[Any], tuple[Any, bool]]) -> None:
        """Apply ``mutator`` to a copy of the shard and persist the result.

        ``mutator`` returns ``(document, changed)``; a ``None`` document
        deletes the shard row.
        """

        with self._shard_locks.hold(shard):
            session = self._session_factory()
            try:
                row = session.get(models.StoreDocument, shard)
                current = copy.deepcopy(row.document) if row is not None else None
                document, changed = mutator(current)
                if not changed:
                    return
                if document is None:
                    if row is not None:
                        session.delete(row)
                elif row is None:
                    session.add(models.StoreDocument(shard=shard, document=document))
                else:
                    row.document = document
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                _logger.exception("path store write failed for shard %s", shard)
                raise StoreIOError(f"Failed to persist shard {shard}") from exc
            finally:
                session.close()

    # -- public contract ------------------------------------------------

    def get(self, path: str) -> Any:
        """Return the value at ``path`` or ``None`` when absent."""

        parts = split_path(path)
        if not parts:
            return self._assemble_root()
        if parts == [CHANNEL_NAMESPACE]:
            return self._assemble_channels()
        shard, inner = self._resolve(parts)
        return _walk(self._read_shard(shard), inner)

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def set(self, path: str, value: Any) -> None:
        """Replace the value at ``path``, stamping ``_updatedAt``."""

        shard, inner = self._resolve(split_path(path))
        stamped = _stamp(value, "_updatedAt")

        def mutator(document: Any) -> tuple[Any, bool]:
            if not inner:
                return stamped, True
            root = document if isinstance(document, dict) else {}
            parent = _ensure_parent(root, inner[:-1])
            parent[inner[-1]] = stamped
            return root, True

        self._mutate(shard, mutator)

    def update(self, path: str, partial: Mapping[str, Any]) -> None:
        """Shallow-merge ``partial`` into the record at ``path``."""

        shard, inner = self._resolve(split_path(path))

        def mutator(document: Any) -> tuple[Any, bool]:
            existing = _walk(document, inner)
            if isinstance(existing, Mapping):
                merged = {**existing, **partial, "_updatedAt": now_ms()}
            else:
                merged = _stamp(dict(partial), "_updatedAt")
            if not inner:
                return merged, True
            root = document if isinstance(document, dict) else {}
            parent = _ensure_parent(root, inner[:-1])
            parent[inner[-1]] = merged
            return root, True

        self._mutate(shard, mutator)

    def push(self, path: str, value: Any) -> str:
        """Store ``value`` under a fresh key in the collection at ``path``."""

        shard, inner = self._resolve(split_path(path))
        key = generate_push_key()
        stamped = _stamp(value, "_createdAt")

        def mutator(document: Any) -> tuple[Any, bool]:
            root = document if isinstance(document, dict) else {}
            collection = _ensure_parent(root, inner)
            collection[key] = stamped
            return root, True

        self._mutate(shard, mutator)
        return key

    def delete(self, path: str) -> None:
        """Remove the value at ``path``; absent paths are a no-op."""

        shard, inner = self._resolve(split_path(path))

        def mutator(document: Any) -> tuple[Any, bool]:
            if document is None:
                return None, False
            if not inner:
                return None, True
            parent = _walk(document, inner[:-1])
            if not isinstance(parent, dict) or inner[-1] not in parent:
                return document, False
            del parent[inner[-1]]
            return document, True

        self._mutate(shard, mutator)

    # -- assembled views ------------------------------------------------

    def _assemble_channels(self) -> dict[str, Any]:
        prefix = f"{CHANNEL_NAMESPACE}/"
        shards = self._load_shards(prefix)
        return {shard[len(prefix):]: document for shard, document in shards.items()}

    def _assemble_root(self) -> dict[str, Any]:
        prefix = f"{CHANNEL_NAMESPACE}/"
        root: dict[str, Any] = {CHANNEL_NAMESPACE: {}}
        for shard, document in self._load_shards().items():
            if shard.startswith(prefix):
                root[CHANNEL_NAMESPACE][shard[len(prefix):]] = document
            else:
                root[shard] = document
        return root


_store: PathStore | None = None


def get_store() -> PathStore:
    """FastAPI dependency returning the process-wide store."""

    global _store
    if _store is None:
        _store = PathStore()
    return _store
