"""
Optimistic local mutation with best-effort remote sync.

apply locally -> commit remotely -> revert locally if the commit fails.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a two-phase operation: a value or an error, never both."""

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> 'Result[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> 'Result[T]':
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


def apply_optimistic(
    apply: Callable[[], Any],
    commit: Callable[[], T],
    revert: Callable[[], Any],
) -> Result[T]:
    """
    Run `apply`, then `commit`; if `commit` raises, run `revert`.

    `apply` errors propagate (nothing happened yet). Commit errors are
    returned as a failed Result after the local state is reverted.
    """
    apply()
    try:
        return Result.success(commit())
    except Exception as e:
        logger.warning(f"[OPTIMISTIC] Remote commit failed, reverting local change: {e}")
        revert()
        return Result.failure(e)
