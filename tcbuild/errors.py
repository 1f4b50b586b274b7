# tcbuild/errors.py
"""
Error types shared by every tcbuild layer.

- TcbuildError and subclasses: fatal conditions that abort the run immediately
- StepResult: outcome of one retrieve/checkout/build step for one component
- ErrorLog: per-phase ordered collection of failed steps, inspected by the orchestrator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class TcbuildError(Exception):
    """Base class for all tcbuild errors."""


class ManifestError(TcbuildError):
    """Manifest cannot be parsed or is structurally invalid."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class UsageError(TcbuildError):
    """Malformed invocation."""


class ErrorKind(str, Enum):
    INTEGRITY = "integrity"
    NETWORK = "network"
    COPY = "copy"
    ARCHIVE = "archive"
    GIT = "git"
    MISSING_SCRIPT = "missing-script"
    COMMAND = "command"
    MANIFEST = "manifest"


@dataclass
class StepResult:
    ok: bool
    message: str = ""
    kind: Optional[ErrorKind] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str = "", **detail: Any) -> "StepResult":
        return cls(True, message, None, dict(detail))

    @classmethod
    def failure(cls, message: str, kind: ErrorKind, **detail: Any) -> "StepResult":
        return cls(False, message, kind, dict(detail))

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class ErrorEntry:
    component: str
    message: str
    kind: Optional[ErrorKind] = None

    def __str__(self) -> str:
        return f"{self.component}: {self.message}"


class ErrorLog:
    """Errors collected during one phase, in the order they were recorded."""

    def __init__(self, phase: str):
        self.phase = phase
        self._entries: List[ErrorEntry] = []

    def add(self, component: str, message: str, kind: Optional[ErrorKind] = None) -> None:
        self._entries.append(ErrorEntry(component, message, kind))

    def record(self, component: str, result: StepResult) -> StepResult:
        if not result.ok:
            self.add(component, result.message, result.kind)
        return result

    def messages(self) -> List[str]:
        return [str(e) for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __iter__(self) -> Iterator[ErrorEntry]:
        return iter(list(self._entries))
