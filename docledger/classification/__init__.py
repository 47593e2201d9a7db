"""
Fragment Classification Layer

RESPONSIBILITY: Tag every raw log entry with what it is
ALLOWED INPUTS: LogEntry (read-only)
OUTPUTS: ClassifiedFragment (immutable)

DECISION ORDER:
===============
1. Decode through the envelope codec
2. Parsed with chunk fields      -> APPLICATION_CHUNK
3. Parsed without chunk fields   -> SINGLE_DOCUMENT
4. Not parsed, transport total>1 -> TRANSPORT_FRAGMENT
5. Otherwise hand to the repairer; repaired objects re-enter step 2/3
   flagged repaired, failures are UNPARSEABLE

WHAT THIS LAYER MUST NOT DO:
============================
- Look at other entries (classification is per entry and order-free)
- Group, merge or rank
- Raise for malformed payloads
"""

from __future__ import annotations
from dataclasses import replace
from typing import Iterable, Optional, Tuple

from ..codec import EnvelopeCodec
from ..contracts.base import Error, ErrorCode, Timestamp
from ..contracts.events import (
    ClassifiedFragment,
    Envelope,
    FragmentKind,
    LogEntry,
)
from ..repair import TruncationRepairer


def stamp_error(error: Error, entry: LogEntry) -> Error:
    """
    Re-time an error to the entry's consensus timestamp and attach its
    sequence number, so identical input yields identical diagnostics.
    """
    return Error(
        code=error.code,
        message=error.message,
        timestamp=Timestamp.parse(entry.consensus_timestamp).value,
        context=error.context + (('sequence_number', str(entry.sequence_number)),),
    )


class FragmentClassifier:
    """Pure per-entry classifier."""

    def __init__(
        self,
        codec: Optional[EnvelopeCodec] = None,
        repairer: Optional[TruncationRepairer] = None,
    ):
        self._codec = codec or EnvelopeCodec()
        self._repairer = repairer or TruncationRepairer()

    def classify(self, entry: LogEntry) -> ClassifiedFragment:
        decoded = self._codec.decode(entry.payload)

        if decoded.is_success:
            return self._from_envelope(
                entry,
                decoded.value.envelope,
                text=decoded.value.text,
            )

        info = entry.transport_chunk_info
        if info is not None and info.total > 1:
            return ClassifiedFragment(entry=entry, kind=FragmentKind.TRANSPORT_FRAGMENT)

        if decoded.error.code == ErrorCode.INVALID_ENVELOPE:
            # Valid JSON with the wrong shape: nothing was truncated
            return ClassifiedFragment(
                entry=entry,
                kind=FragmentKind.UNPARSEABLE,
                text=self._codec.unwrap(entry.payload),
                error=stamp_error(decoded.error, entry),
            )

        return self._repair(entry, decoded.error)

    def classify_all(self, entries: Iterable[LogEntry]) -> Tuple[ClassifiedFragment, ...]:
        return tuple(self.classify(entry) for entry in entries)

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    def _repair(self, entry: LogEntry, decode_error: Error) -> ClassifiedFragment:
        text = self._codec.unwrap(entry.payload)
        repaired = self._repairer.repair(text)

        if repaired.is_failure:
            return ClassifiedFragment(
                entry=entry,
                kind=FragmentKind.UNPARSEABLE,
                text=text,
                error=stamp_error(decode_error, entry).with_context(
                    'repair', repaired.error.message
                ),
            )

        outcome = repaired.value
        validated = self._codec.envelope_from_mapping(
            outcome.obj,
            fallback_timestamp=entry.consensus_timestamp,
        )
        if validated.is_failure:
            return ClassifiedFragment(
                entry=entry,
                kind=FragmentKind.UNPARSEABLE,
                text=text,
                error=stamp_error(validated.error, entry).with_context(
                    'repair_strategy', outcome.strategy
                ),
            )

        return self._from_envelope(
            entry,
            validated.value,
            text=text,
            repair_strategy=outcome.strategy,
        )

    @staticmethod
    def _from_envelope(
        entry: LogEntry,
        envelope: Envelope,
        text: str,
        repair_strategy: Optional[str] = None,
    ) -> ClassifiedFragment:
        if envelope.is_chunk:
            kind = FragmentKind.APPLICATION_CHUNK
        else:
            kind = FragmentKind.SINGLE_DOCUMENT
            if envelope.timestamp is None:
                envelope = replace(envelope, timestamp=entry.consensus_timestamp)

        return ClassifiedFragment(
            entry=entry,
            kind=kind,
            envelope=envelope,
            text=text,
            repaired=repair_strategy is not None,
            repair_strategy=repair_strategy,
        )
