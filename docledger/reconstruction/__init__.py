"""
Group Reconstruction Layer

RESPONSIBILITY: Turn classified fragments into scored candidate documents
ALLOWED INPUTS: ClassifiedFragment (from classification layer)
OUTPUTS: ChunkGroup, ReconstructionCandidate, Ranking

GROUPING:
=========
Application chunks: (owner_id, type, timestamp, total_chunks)
Transport fragments: (group_key, total)

Only complete groups become candidates. An incomplete group is reported
as INCOMPLETE_GROUP and withheld; it is never promoted to a partial
document. Repaired chunks are grouped but never fill an index.

RANKING:
========
(1) anchor fields, (2) populated top-level field count, (3) envelope
timestamp, then non-repaired first, higher sequence number, content
digest.

WHAT THIS LAYER MUST NOT DO:
============================
- Decode payloads itself (transport reassembly returns a LogEntry that
  goes back through classification)
- Normalize legacy shapes
- Raise for bad groups
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import copy

from ..config import AnchorPolicy, FieldPath, ReassemblyConfig
from ..contracts.base import DocumentType, Error, ErrorCode, Result, Timestamp
from ..contracts.events import (
    CandidateOrigin,
    ChunkGroup,
    ClassifiedFragment,
    CompletenessScore,
    FragmentKind,
    LogEntry,
    ReconstructionCandidate,
)


# =============================================================================
# DOCUMENT HELPERS
# =============================================================================

def deep_merge(base: Dict[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge update into base in place.

    Nested mappings merge key-wise; any other value from update replaces
    what base held.
    """
    for key, value in update.items():
        current = base.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            deep_merge(current, value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (Mapping, list, tuple)):
        return count_fields(value) > 0
    return True


def count_fields(value: Any) -> int:
    """Recursive count of populated leaf values."""
    if isinstance(value, Mapping):
        return sum(count_fields(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return sum(count_fields(v) for v in value)
    if value is None:
        return 0
    if isinstance(value, str) and not value.strip():
        return 0
    return 1


def count_top_level_fields(document: Mapping[str, Any]) -> int:
    """Populated top-level fields; a nested mapping or list counts once."""
    return sum(1 for value in document.values() if is_populated(value))


def resolve_path(document: Mapping[str, Any], path: FieldPath) -> Any:
    current: Any = document
    for part in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def has_anchor_fields(document: Mapping[str, Any], policy: AnchorPolicy) -> bool:
    for path in policy.named_fields:
        value = resolve_path(document, path)
        if isinstance(value, str) and value.strip() \
                and value.strip().lower() not in policy.placeholders:
            return True
    for path in policy.rich_fields:
        if is_populated(resolve_path(document, path)):
            return True
    return False


@dataclass(frozen=True)
class Ranking:
    """Outcome of ranking: winner, full order, and any tie diagnostic."""
    winner: ReconstructionCandidate
    ordered: Tuple[ReconstructionCandidate, ...]
    ambiguity: Optional[Error] = None


# =============================================================================
# RECONSTRUCTOR
# =============================================================================

class GroupReconstructor:
    """
    Stateless grouping, merging and ranking.

    Anchor policies come from configuration, one per DocumentType.
    """

    def __init__(self, config: Optional[ReassemblyConfig] = None):
        self._config = config or ReassemblyConfig()

    # -------------------------------------------------------------------------
    # APPLICATION CHUNKS
    # -------------------------------------------------------------------------

    def group_application_chunks(
        self,
        fragments: Iterable[ClassifiedFragment],
    ) -> Tuple[ChunkGroup, ...]:
        buckets: Dict[Tuple[Any, ...], List[ClassifiedFragment]] = {}
        for fragment in fragments:
            if fragment.kind != FragmentKind.APPLICATION_CHUNK or fragment.envelope is None:
                continue
            env = fragment.envelope
            key = (env.owner_id or '', env.type.value, env.timestamp or '', env.total_chunks)
            buckets.setdefault(key, []).append(fragment)

        return tuple(
            ChunkGroup(
                key=key,
                total=key[3],
                members=tuple(sorted(buckets[key], key=lambda f: f.entry.order_key)),
            )
            for key in sorted(buckets)
        )

    def merge_group(self, group: ChunkGroup) -> Result:
        """
        Merge a complete application chunk group into one candidate.

        Returns Result.failure(INCOMPLETE_GROUP) when any index is missing
        or held only by a repaired chunk.
        """
        if not group.is_complete:
            return Result.failure(self._incomplete(group))

        chosen = self._latest_per_index(group)
        merged: Dict[str, Any] = {}
        for index in sorted(chosen):
            deep_merge(merged, chosen[index].envelope.data)

        members = list(chosen.values())
        newest = max(members, key=lambda f: f.entry.order_key)
        head = chosen[0].envelope

        return Result.success(self._candidate(
            owner_id=head.owner_id,
            doc_type=head.type,
            document=merged,
            origin=CandidateOrigin.CHUNK_GROUP,
            timestamp=head.timestamp or newest.entry.consensus_timestamp,
            consensus_timestamp=newest.entry.consensus_timestamp,
            sequence_numbers=tuple(sorted(m.entry.sequence_number for m in members)),
        ))

    # -------------------------------------------------------------------------
    # TRANSPORT FRAGMENTS
    # -------------------------------------------------------------------------

    def group_transport_fragments(
        self,
        fragments: Iterable[ClassifiedFragment],
    ) -> Tuple[ChunkGroup, ...]:
        buckets: Dict[Tuple[Any, ...], List[ClassifiedFragment]] = {}
        for fragment in fragments:
            info = fragment.entry.transport_chunk_info
            if fragment.kind != FragmentKind.TRANSPORT_FRAGMENT or info is None:
                continue
            key = (info.group_key, info.total)
            buckets.setdefault(key, []).append(fragment)

        return tuple(
            ChunkGroup(
                key=key,
                total=key[1],
                members=tuple(sorted(buckets[key], key=lambda f: f.entry.order_key)),
                transport=True,
            )
            for key in sorted(buckets)
        )

    def reassemble_transport(self, group: ChunkGroup) -> Result:
        """
        Concatenate a complete transport group into one synthetic LogEntry.

        Bytes payloads join as bytes so multi-byte characters split across
        fragments survive; text payloads join as text.
        """
        if not group.is_complete:
            return Result.failure(self._incomplete(group))

        chosen = self._latest_per_index(group)
        ordered = [chosen[i].entry for i in sorted(chosen)]
        payloads = [e.payload for e in ordered]

        if all(isinstance(p, (bytes, bytearray)) for p in payloads):
            payload = b''.join(bytes(p) for p in payloads)
        else:
            payload = ''.join(
                p.decode('utf-8', errors='replace') if isinstance(p, (bytes, bytearray)) else p
                for p in payloads
            )

        first = ordered[0]
        newest = max(ordered, key=lambda e: e.order_key)
        return Result.success(LogEntry(
            sequence_number=first.sequence_number,
            consensus_timestamp=newest.consensus_timestamp,
            payer_id=first.payer_id,
            payload=payload,
            transport_chunk_info=None,
            topic_id=first.topic_id,
            running_hash=newest.running_hash,
        ))

    # -------------------------------------------------------------------------
    # SINGLE DOCUMENTS
    # -------------------------------------------------------------------------

    def candidate_from_single(self, fragment: ClassifiedFragment) -> ReconstructionCandidate:
        env = fragment.envelope
        if fragment.repaired:
            origin = CandidateOrigin.REPAIRED
        elif fragment.reconstructed:
            origin = CandidateOrigin.TRANSPORT_REASSEMBLED
        else:
            origin = CandidateOrigin.SINGLE_DOCUMENT

        return self._candidate(
            owner_id=env.owner_id,
            doc_type=env.type,
            document=copy.deepcopy(dict(env.data)),
            origin=origin,
            timestamp=env.timestamp or fragment.entry.consensus_timestamp,
            consensus_timestamp=fragment.entry.consensus_timestamp,
            sequence_numbers=(fragment.entry.sequence_number,),
        )

    # -------------------------------------------------------------------------
    # SCORING / RANKING
    # -------------------------------------------------------------------------

    def score(self, document: Mapping[str, Any], doc_type: DocumentType, timestamp: str) -> CompletenessScore:
        return CompletenessScore(
            field_count=count_top_level_fields(document),
            has_anchor_fields=has_anchor_fields(document, self._config.anchor_policy(doc_type)),
            timestamp=timestamp,
        )

    def rank(self, candidates: Iterable[ReconstructionCandidate], doc_type: DocumentType) -> Result:
        """
        Order candidates best-first.

        Returns Result.success(Ranking) or Result.failure(NO_CANDIDATE).
        Ties on the heuristic score are resolved deterministically and
        reported as an AMBIGUOUS_CANDIDATE diagnostic on the Ranking.
        """
        pool = [c for c in candidates if c.doc_type == doc_type]
        if not pool:
            return Result.failure(Error(
                code=ErrorCode.NO_CANDIDATE,
                message=f"No candidate for {doc_type.value}",
                timestamp=Timestamp.parse(None).value,
                context=(('type', doc_type.value),),
            ))

        # Stable sorts: digest ascending breaks the final ties
        ordered = sorted(pool, key=lambda c: c.digest)
        ordered = sorted(
            ordered,
            key=lambda c: (
                c.score.rank_key,
                c.origin != CandidateOrigin.REPAIRED,
                max(c.sequence_numbers, default=-1),
            ),
            reverse=True,
        )

        winner = ordered[0]
        tied = [
            c for c in ordered[1:]
            if c.score.rank_key == winner.score.rank_key and c.digest != winner.digest
        ]
        ambiguity = None
        if tied:
            ambiguity = Error(
                code=ErrorCode.AMBIGUOUS_CANDIDATE,
                message=f"{len(tied) + 1} {doc_type.value} candidates share the top score",
                timestamp=Timestamp.parse(winner.consensus_timestamp).value,
                context=(
                    ('type', doc_type.value),
                    ('winner_sequence_numbers', ','.join(str(s) for s in winner.sequence_numbers)),
                    ('tied_sequence_numbers', ','.join(
                        str(s) for c in tied for s in c.sequence_numbers
                    )),
                ),
            )

        return Result.success(Ranking(winner=winner, ordered=tuple(ordered), ambiguity=ambiguity))

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    def _candidate(
        self,
        owner_id: Optional[str],
        doc_type: DocumentType,
        document: Dict[str, Any],
        origin: CandidateOrigin,
        timestamp: str,
        consensus_timestamp: str,
        sequence_numbers: Tuple[int, ...],
    ) -> ReconstructionCandidate:
        return ReconstructionCandidate(
            owner_id=owner_id,
            doc_type=doc_type,
            document=document,
            score=self.score(document, doc_type, timestamp),
            origin=origin,
            timestamp=timestamp,
            consensus_timestamp=consensus_timestamp,
            sequence_numbers=sequence_numbers,
        )

    @staticmethod
    def _latest_per_index(group: ChunkGroup) -> Dict[int, ClassifiedFragment]:
        # Duplicate index: later consensus timestamp, then higher sequence
        chosen: Dict[int, ClassifiedFragment] = {}
        for member in group.members:
            index = group.index_of(member)
            if member.repaired or not 0 <= index < group.total:
                continue
            held = chosen.get(index)
            if held is None or member.entry.order_key > held.entry.order_key:
                chosen[index] = member
        return chosen

    @staticmethod
    def _incomplete(group: ChunkGroup) -> Error:
        newest = max(group.members, key=lambda f: f.entry.order_key)
        return Error(
            code=ErrorCode.INCOMPLETE_GROUP,
            message=f"Chunk group has {len(group.indices)} of {group.total} indices",
            timestamp=Timestamp.parse(newest.entry.consensus_timestamp).value,
            context=(
                ('group_key', '|'.join(str(k) for k in group.key)),
                ('missing', ','.join(str(i) for i in group.missing_indices)),
                ('sequence_numbers', ','.join(str(s) for s in group.sequence_numbers)),
                ('transport', str(group.transport).lower()),
            ),
        )
