"""Error kinds shared by the search paths and the reindex job."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    MALFORMED = "malformed"
    STORE = "store"


@dataclass(frozen=True)
class SearchFailure:
    """Why a search path produced no result."""

    kind: ErrorKind
    message: str

    def describe(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ReindexError(RuntimeError):
    """A reindex stage could not complete; the run must be aborted."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage}: {message}")
