"""
Contracts Module

This module defines the explicit interfaces and data transfer objects
that form the contracts between layers. All inter-layer communication
MUST use these contracts. No layer may import implementation details
from another layer.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. All contracts include explicit error states
3. Errors are values; only TransportError is raised across the surface
4. Derived values are recomputed on every read, never cached
"""

from .base import (
    DocumentType,
    Error,
    ErrorCode,
    Result,
    Timestamp,
    TransportError,
    consensus_sort_key,
)
from .events import (
    AssemblyResult,
    AuditEventType,
    AuditLogEntry,
    CandidateOrigin,
    CanonicalDocument,
    ChunkGroup,
    ClassifiedFragment,
    CompletenessScore,
    Envelope,
    FragmentKind,
    LogEntry,
    MetricPoint,
    ProcessedMessage,
    ReassemblyReport,
    ReconstructionCandidate,
    TransportChunkInfo,
)

__all__ = [
    'DocumentType',
    'Error',
    'ErrorCode',
    'Result',
    'Timestamp',
    'TransportError',
    'consensus_sort_key',
    'AssemblyResult',
    'AuditEventType',
    'AuditLogEntry',
    'CandidateOrigin',
    'CanonicalDocument',
    'ChunkGroup',
    'ClassifiedFragment',
    'CompletenessScore',
    'Envelope',
    'FragmentKind',
    'LogEntry',
    'MetricPoint',
    'ProcessedMessage',
    'ReassemblyReport',
    'ReconstructionCandidate',
    'TransportChunkInfo',
]
