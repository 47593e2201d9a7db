"""
Layer-Specific Contracts

These contracts define the explicit interfaces between layers.
Each layer exposes its contracts here, and other layers consume only these.

DATA FLOW:
==========
LogEntry (external, read-only)
    -> ClassifiedFragment (classification layer)
    -> ChunkGroup / ReconstructionCandidate (reconstruction layer)
    -> CanonicalDocument (normalization layer)
    -> AssemblyResult (assembly layer)

Every derived type is recomputed on each read. None is persisted.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from enum import Enum

from .base import DocumentType, Error, Timestamp, consensus_sort_key
from ..domain.serialization import canonical_json


# =============================================================================
# EXTERNAL LOG CONTRACTS (owned by the log service)
# =============================================================================

@dataclass(frozen=True)
class TransportChunkInfo:
    """
    Fragment metadata added by the log transport when it split an
    oversized submission on its own. Index is 0-based.
    """
    index: int
    total: int
    group_key: str

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'total': self.total,
            'group_key': self.group_key,
        }


@dataclass(frozen=True)
class LogEntry:
    """
    IMMUTABLE entry as returned by the log service.

    The payload is exactly what the service returned: text, bytes,
    possibly base64-wrapped, possibly a partial transport fragment.
    """
    sequence_number: int
    consensus_timestamp: str
    payer_id: str
    payload: Union[str, bytes]
    transport_chunk_info: Optional[TransportChunkInfo] = None
    topic_id: Optional[str] = None
    running_hash: Optional[str] = None

    @property
    def order_key(self) -> Tuple[Tuple[int, int], int]:
        """Total order over entries: consensus time, then sequence."""
        return (consensus_sort_key(self.consensus_timestamp), self.sequence_number)


# =============================================================================
# APPLICATION CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class Envelope:
    """
    Application-level unit placed inside one or more log payloads.

    chunk_index / total_chunks are present only when the chunker split
    a document; their absence means the payload is a whole document.
    """
    type: DocumentType
    timestamp: Optional[str]
    owner_id: Optional[str]
    data: Mapping[str, Any]
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    wire_type: Optional[str] = None

    @property
    def is_chunk(self) -> bool:
        return self.chunk_index is not None


class FragmentKind(Enum):
    """Classification outcome for a single log entry."""
    APPLICATION_CHUNK = "application_chunk"
    SINGLE_DOCUMENT = "single_document"
    TRANSPORT_FRAGMENT = "transport_fragment"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True)
class ClassifiedFragment:
    """
    IMMUTABLE output of the classification layer.

    INVARIANT:
    - APPLICATION_CHUNK / SINGLE_DOCUMENT carry an envelope
    - TRANSPORT_FRAGMENT carries neither envelope nor error
    - UNPARSEABLE carries an error
    """
    entry: LogEntry
    kind: FragmentKind
    envelope: Optional[Envelope] = None
    text: Optional[str] = None
    error: Optional[Error] = None
    repaired: bool = False
    repair_strategy: Optional[str] = None
    reconstructed: bool = False

    @property
    def is_usable(self) -> bool:
        return self.envelope is not None


@dataclass(frozen=True)
class ChunkGroup:
    """
    Fragments believed to originate from one logical write.

    Application chunks key on (owner_id, type, timestamp, total_chunks);
    transport fragments key on (group_key, total). A repaired member holds
    only part of its slice, so it never fills its index.
    """
    key: Tuple[Any, ...]
    total: int
    members: Tuple[ClassifiedFragment, ...]
    transport: bool = False

    def index_of(self, fragment: ClassifiedFragment) -> int:
        if self.transport:
            return fragment.entry.transport_chunk_info.index
        return fragment.envelope.chunk_index

    @property
    def indices(self) -> Tuple[int, ...]:
        present = {self.index_of(m) for m in self.members if not m.repaired}
        return tuple(sorted(i for i in present if 0 <= i < self.total))

    @property
    def missing_indices(self) -> Tuple[int, ...]:
        present = set(self.indices)
        return tuple(i for i in range(self.total) if i not in present)

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and not self.missing_indices

    @property
    def sequence_numbers(self) -> Tuple[int, ...]:
        return tuple(sorted(m.entry.sequence_number for m in self.members))


# =============================================================================
# RECONSTRUCTION CONTRACTS
# =============================================================================

class CandidateOrigin(Enum):
    """Where a reconstruction candidate came from."""
    CHUNK_GROUP = "chunk_group"
    SINGLE_DOCUMENT = "single_document"
    TRANSPORT_REASSEMBLED = "transport_reassembled"
    REPAIRED = "repaired"


@dataclass(frozen=True)
class CompletenessScore:
    """Heuristic completeness used to rank competing candidates."""
    field_count: int
    has_anchor_fields: bool
    timestamp: str

    @property
    def rank_key(self) -> Tuple[bool, int, Any]:
        return (
            self.has_anchor_fields,
            self.field_count,
            Timestamp.parse(self.timestamp).value,
        )


@dataclass(frozen=True)
class ReconstructionCandidate:
    """A merged document for one (owner_id, type) plus its score."""
    owner_id: Optional[str]
    doc_type: DocumentType
    document: Mapping[str, Any]
    score: CompletenessScore
    origin: CandidateOrigin
    timestamp: str
    consensus_timestamp: str
    sequence_numbers: Tuple[int, ...]

    @property
    def digest(self) -> str:
        return canonical_json(self.document)


@dataclass(frozen=True)
class CanonicalDocument:
    """The single document chosen to represent an owner's type."""
    owner_id: Optional[str]
    doc_type: DocumentType
    document: Mapping[str, Any]
    candidate: ReconstructionCandidate
    normalized_from_legacy: bool = False

    def to_dict(self) -> dict:
        return {
            'type': self.doc_type.value,
            'document': self.document,
            'origin': self.candidate.origin.value,
            'timestamp': self.candidate.timestamp,
            'sequence_numbers': list(self.candidate.sequence_numbers),
            'normalized_from_legacy': self.normalized_from_legacy,
        }


# =============================================================================
# ASSEMBLY CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class ProcessedMessage:
    """One decoded entry in the deduplicated history view."""
    sequence_number: int
    consensus_timestamp: str
    payer_id: str
    topic_id: Optional[str]
    type: str
    timestamp: Optional[str]
    owner_id: Optional[str]
    data: Mapping[str, Any]
    chunk_index: Optional[int]
    total_chunks: Optional[int]
    reconstructed: bool
    message: str
    chunk_info: Optional[TransportChunkInfo] = None

    def to_dict(self) -> dict:
        return {
            'sequence_number': self.sequence_number,
            'consensus_timestamp': self.consensus_timestamp,
            'payer_id': self.payer_id,
            'topic_id': self.topic_id,
            'type': self.type,
            'timestamp': self.timestamp,
            'owner_id': self.owner_id,
            'data': self.data,
            'chunk_index': self.chunk_index,
            'total_chunks': self.total_chunks,
            'reconstructed': self.reconstructed,
            'message': self.message,
            'chunk_info': self.chunk_info.to_dict() if self.chunk_info else None,
        }


@dataclass
class ReassemblyReport:
    """
    Report of one assemble call.

    TRACEABLE:
    Every input entry ends up counted under one fragment kind, and every
    entry or group that contributes nothing has an Error recorded here.
    """
    entries_seen: int = 0
    kind_counts: Dict[str, int] = field(default_factory=dict)
    repaired: List[Tuple[int, str]] = field(default_factory=list)
    dropped: List[Error] = field(default_factory=list)
    incomplete_groups: List[Error] = field(default_factory=list)
    ambiguous: List[Error] = field(default_factory=list)
    foreign_owner: List[Error] = field(default_factory=list)

    def count(self, kind: FragmentKind):
        self.kind_counts[kind.value] = self.kind_counts.get(kind.value, 0) + 1

    def count_of(self, kind: FragmentKind) -> int:
        return self.kind_counts.get(kind.value, 0)

    @property
    def dropped_count(self) -> int:
        return len(self.dropped)

    @property
    def repaired_count(self) -> int:
        return len(self.repaired)

    def to_dict(self) -> dict:
        def errors(items: List[Error]) -> list:
            return [
                {'code': e.code.name, 'message': e.message, 'context': dict(e.context)}
                for e in items
            ]

        return {
            'entries_seen': self.entries_seen,
            'kind_counts': dict(sorted(self.kind_counts.items())),
            'repaired': [{'sequence_number': s, 'strategy': st} for s, st in self.repaired],
            'dropped': errors(self.dropped),
            'incomplete_groups': errors(self.incomplete_groups),
            'ambiguous': errors(self.ambiguous),
            'foreign_owner': errors(self.foreign_owner),
        }


@dataclass(frozen=True)
class AssemblyResult:
    """
    Canonical documents for one owner.

    The report is diagnostic only and does not take part in equality.
    """
    owner_id: str
    profile: Optional[CanonicalDocument]
    business_data: Optional[CanonicalDocument]
    insights: Tuple[Mapping[str, Any], ...]
    completions: Tuple[Mapping[str, Any], ...]
    all_messages: Tuple[ProcessedMessage, ...]
    report: ReassemblyReport = field(default_factory=ReassemblyReport, compare=False)

    @property
    def is_empty(self) -> bool:
        return (
            self.profile is None
            and self.business_data is None
            and not self.insights
            and not self.completions
        )

    def to_dict(self) -> dict:
        return {
            'owner_id': self.owner_id,
            'profile': self.profile.document if self.profile else None,
            'business_data': self.business_data.document if self.business_data else None,
            'insights': list(self.insights),
            'completions': list(self.completions),
            'all_messages': [m.to_dict() for m in self.all_messages],
        }

    def to_json(self) -> str:
        return canonical_json(self.to_dict())


# =============================================================================
# OBSERVABILITY CONTRACTS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    CLASSIFICATION = "classification"
    REPAIR = "repair"
    RECONSTRUCTION = "reconstruction"
    ASSEMBLY = "assembly"
    TRANSPORT = "transport"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: Timestamp
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
