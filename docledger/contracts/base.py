"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.
No behavior, no side effects, no dependencies.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- All types are frozen dataclasses for immutability guarantee
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Codec / classification errors
    DECODE_ERROR = auto()
    INVALID_ENVELOPE = auto()
    REPAIR_FAILED = auto()

    # Reconstruction errors
    INCOMPLETE_GROUP = auto()
    AMBIGUOUS_CANDIDATE = auto()
    NO_CANDIDATE = auto()
    FOREIGN_OWNER = auto()

    # External log errors
    TRANSPORT_ERROR = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def context_value(self, key: str) -> Optional[str]:
        for k, v in self.context:
            if k == key:
                return v
        return None


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


class TransportError(Exception):
    """
    Raised when the external log cannot be reached or rejects a call.

    The only failure that crosses the public surface: it concerns the
    whole input set, not a single entry.
    """

    def __init__(self, error: Error):
        super().__init__(error.message)
        self.error = error

    @staticmethod
    def create(message: str, **context: str) -> TransportError:
        return TransportError(Error(
            code=ErrorCode.TRANSPORT_ERROR,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((k, str(v)) for k, v in sorted(context.items()))
        ))


# =============================================================================
# DOCUMENT TYPES (Tagged variant)
# =============================================================================

class DocumentType(Enum):
    """
    Document kinds written to an owner's log.
    The tag selects merge and normalization rules downstream.
    """
    PROFILE = "profile"
    BUSINESS_DATA = "business_data"
    INSIGHT = "insight"
    COMPLETION = "completion"

    @property
    def wire_name(self) -> str:
        return self.value

    @staticmethod
    def from_wire(tag: object) -> Optional[DocumentType]:
        """
        Resolve a wire tag, including tags written by older clients.
        Returns None for unknown tags.
        """
        if not isinstance(tag, str):
            return None
        return _WIRE_ALIASES.get(tag.strip().lower())


_WIRE_ALIASES = {
    "profile": DocumentType.PROFILE,
    "user_profile": DocumentType.PROFILE,
    "business_data": DocumentType.BUSINESS_DATA,
    "insight": DocumentType.INSIGHT,
    "ai_insight": DocumentType.INSIGHT,
    "daily_missions": DocumentType.INSIGHT,
    "weekly_goals": DocumentType.INSIGHT,
    "business_observations": DocumentType.INSIGHT,
    "completion": DocumentType.COMPLETION,
    "mission_completion": DocumentType.COMPLETION,
}


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    @staticmethod
    def parse(raw: object) -> Timestamp:
        """
        Parse either an ISO-8601 string or a consensus timestamp
        ("<seconds>.<nanoseconds>"). Unparseable values map to EPOCH
        so ordering stays total and deterministic.
        """
        if isinstance(raw, datetime):
            return Timestamp(value=raw)
        if isinstance(raw, (int, float)):
            return Timestamp(value=datetime.fromtimestamp(raw, tz=timezone.utc))
        if not isinstance(raw, str) or not raw.strip():
            return Timestamp(value=EPOCH)
        text = raw.strip()
        try:
            seconds = Decimal(text)
            return Timestamp(value=datetime.fromtimestamp(float(seconds), tz=timezone.utc))
        except (InvalidOperation, ValueError, OverflowError):
            pass
        try:
            return Timestamp.from_iso(text)
        except ValueError:
            return Timestamp(value=EPOCH)


def consensus_sort_key(raw: object) -> Tuple[int, int]:
    """
    Exact ordering key for consensus timestamps.

    Floats lose nanosecond precision, so "<seconds>.<nanos>" strings are
    split into integer parts. ISO strings fall back to microseconds.
    """
    if isinstance(raw, str):
        text = raw.strip()
        head, _, tail = text.partition(".")
        if head.isdigit() and (not tail or tail.isdigit()):
            return (int(head), int(tail.ljust(9, "0")[:9]) if tail else 0)
    value = Timestamp.parse(raw).value
    return (int(value.timestamp()), value.microsecond * 1000)
