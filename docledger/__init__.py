"""
docledger

Chunking and reconstruction of structured documents stored on a per-owner
append-only log with a hard payload ceiling. Each layer communicates only
through explicit contracts, never through shared mutable state.

LAYER STRUCTURE:
================

1. CHUNKING LAYER (chunking/)
   - Responsibility: Split documents into size-bounded partial documents
   - Outputs: Ordered list of partial documents
   - MUST NOT: Encode, append, or drop data

2. ENVELOPE CODEC (codec/)
   - Responsibility: Envelope encode/decode, base64 unwrapping
   - Outputs: Envelope bytes, Result[DecodedPayload]
   - MUST NOT: Raise for malformed payloads

3. CLASSIFICATION LAYER (classification/)
   - Responsibility: Tag each LogEntry as chunk, single, transport
     fragment or unparseable
   - Outputs: ClassifiedFragment (immutable)
   - MUST NOT: Look at other entries

4. REPAIR LAYER (repair/)
   - Responsibility: Best-effort recovery of truncated payloads
   - Outputs: Result[RepairOutcome]
   - MUST NOT: Fabricate values or read the clock

5. RECONSTRUCTION LAYER (reconstruction/)
   - Responsibility: Group, merge and rank candidates
   - Outputs: ChunkGroup, ReconstructionCandidate, Ranking
   - MUST NOT: Promote incomplete groups

6. NORMALIZATION LAYER (normalization/)
   - Responsibility: Map legacy flat documents onto the current shape
   - Outputs: Documents in current shape

7. ASSEMBLY LAYER (assembly/)
   - Responsibility: Canonical per-type view of one owner
   - Outputs: AssemblyResult + ReassemblyReport

8. TRANSPORT LAYER (transport/)
   - Responsibility: Reader/writer interfaces, mirror node client,
     write and read services
   - MUST NOT: Retry (TransportError propagates)

9. OBSERVABILITY & AUDIT LAYER (observability/)
   - Responsibility: Audit log and metrics
   - MUST NOT: Modify system behavior

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: Log entries and derived values are frozen
- Deterministic: Identical entry sets produce identical results
- Order-independent: Entry order never changes the outcome
- Explicit errors: Per-entry failures are values, never raised
"""

from .assembly import DocumentAssembler, MergeStrategy, TYPE_STRATEGIES
from .chunking import Chunker, split_document
from .classification import FragmentClassifier
from .codec import DecodedPayload, EnvelopeCodec
from .config import AnchorPolicy, ReassemblyConfig
from .contracts import (
    AssemblyResult,
    CanonicalDocument,
    DocumentType,
    Envelope,
    Error,
    ErrorCode,
    FragmentKind,
    LogEntry,
    ReassemblyReport,
    Result,
    TransportChunkInfo,
    TransportError,
)
from .normalization import LegacyNormalizer, prune_empty
from .observability import ObservabilityConfig, ObservabilityEngine
from .reconstruction import GroupReconstructor
from .repair import RepairOutcome, TruncationRepairer
from .transport import (
    DocumentWriter,
    InMemoryLog,
    LogReader,
    LogWriter,
    MirrorNodeReader,
    ReassemblyService,
)

__version__ = "0.1.0"

__all__ = [
    'AnchorPolicy',
    'AssemblyResult',
    'CanonicalDocument',
    'Chunker',
    'DecodedPayload',
    'DocumentAssembler',
    'DocumentType',
    'DocumentWriter',
    'Envelope',
    'EnvelopeCodec',
    'Error',
    'ErrorCode',
    'FragmentClassifier',
    'FragmentKind',
    'GroupReconstructor',
    'InMemoryLog',
    'LegacyNormalizer',
    'LogEntry',
    'LogReader',
    'LogWriter',
    'MergeStrategy',
    'MirrorNodeReader',
    'ObservabilityConfig',
    'ObservabilityEngine',
    'ReassemblyConfig',
    'ReassemblyReport',
    'ReassemblyService',
    'RepairOutcome',
    'Result',
    'TYPE_STRATEGIES',
    'TransportChunkInfo',
    'TransportError',
    'TruncationRepairer',
    'prune_empty',
    'split_document',
]
