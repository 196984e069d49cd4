"""
Shared exception classes.

Cache lookups and inserts report misses and collisions with these so callers
can drive create-or-adopt paths without string matching.
"""

from typing import Any, Iterable, List, Optional


class ExecutorError(Exception):
    """Base exception class for the executor control plane."""

    pass


class NotFoundError(ExecutorError):
    """Raised when a key or object is absent."""

    def __init__(self, detail: str = "not found"):
        self.detail = detail
        super().__init__(detail)


class NameExistsError(ExecutorError):
    """Raised when inserting a key that is already present."""

    def __init__(self, detail: str = "name exists", existing: Any = None):
        self.detail = detail
        self.existing = existing
        super().__init__(detail)


class MultiError(ExecutorError):
    """Aggregates several errors so all of them are reported together."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    @classmethod
    def collect(cls, errors: Iterable[Optional[BaseException]]) -> Optional[BaseException]:
        """Return None, the only error, or a MultiError of all of them."""
        errs = [e for e in errors if e is not None]
        if not errs:
            return None
        if len(errs) == 1:
            return errs[0]
        return cls(errs)


def is_not_found(err: Optional[BaseException]) -> bool:
    return isinstance(err, NotFoundError)


def is_name_exists(err: Optional[BaseException]) -> bool:
    return isinstance(err, NameExistsError)
