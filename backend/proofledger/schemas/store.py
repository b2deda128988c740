"""Schemas for the generic path API."""

# purpose: validate raw path store reads and writes exposed to dashboard clients
# status: pilot

from typing import Any, Literal, Optional

from .common import CamelModel


class PathWriteRequest(CamelModel):
    path: str
    data: Any = None
    operation: Literal["set", "update", "push"] = "set"


class PathReadOut(CamelModel):
    data: Any = None


class PathWriteOut(CamelModel):
    success: bool = True
    key: Optional[str] = None
