"""
Seams between the engine and its collaborators.

Calls that leave the engine (currency transfers, the venue) go through
``call_external`` and come back as an explicit ``CallResult``; the engine
decides what a failure means. Collaborators that hold state implement
``Transactional`` so the engine can checkpoint and restore them as one unit
with its own state.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Transactional(Protocol):
    def snapshot(self) -> bytes:
        ...

    def restore(self, blob: bytes) -> None:
        ...


@dataclass(frozen=True)
class CallResult:
    ok: bool
    value: Any = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: Any = None) -> 'CallResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> 'CallResult':
        return cls(ok=False, error=error)

    @property
    def reason(self) -> str:
        if self.ok:
            return ""
        return f"{type(self.error).__name__}: {self.error}"


def call_external(fn: Callable, *args, **kwargs) -> CallResult:
    """Invoke a collaborator, turning a raised exception into a failed result."""
    try:
        return CallResult.success(fn(*args, **kwargs))
    except Exception as e:
        logger.warning(f"External call {getattr(fn, '__qualname__', fn)} failed: {e}")
        return CallResult.failure(e)
