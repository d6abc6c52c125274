"""
Trace Correlation - explicit per-operation correlation ids.

A TraceContext is created at the action boundary and passed down into every
billed operation. Its id is bound onto loggers and returned with
internal-error responses so support can find the matching log lines.
"""

import secrets
import string
from dataclasses import dataclass
from typing import Any

from ielts_lover.config import settings

TRACE_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_trace_id(prefix: str | None = None, length: int | None = None) -> str:
    """Mint a short support id such as ``ERR-7KQ2ZD``."""
    prefix = settings.trace_id_prefix if prefix is None else prefix
    length = settings.trace_id_length if length is None else length
    suffix = "".join(secrets.choice(TRACE_ID_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


@dataclass(frozen=True)
class TraceContext:
    """Correlation context for one user-facing operation."""

    trace_id: str
    operation: str

    @classmethod
    def new(cls, operation: str) -> "TraceContext":
        """Create a context with a freshly minted trace id."""
        return cls(trace_id=generate_trace_id(), operation=operation)

    def bind(self, logger: Any) -> Any:
        """Return ``logger`` with trace_id and operation bound."""
        return logger.bind(trace_id=self.trace_id, operation=self.operation)
