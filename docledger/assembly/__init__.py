"""
Document Assembly Layer

RESPONSIBILITY: Produce the canonical per-type view of one owner's log
ALLOWED INPUTS: owner_id + LogEntry sequence (any order, duplicates allowed)
OUTPUTS: AssemblyResult (immutable) with a ReassemblyReport

LAYER FLOW:
===========
1. Classification: LogEntry -> ClassifiedFragment
2. Transport reassembly: complete transport groups -> synthetic entries,
   classified again
3. Ownership: envelopes naming another owner are dropped
4. Reconstruction: chunk groups merged, singles scored; repaired singles
   belonging to a chunked write are dropped
5. Per-type strategy (TYPE_STRATEGIES):
     CANONICAL - one ranked winner; legacy writes compete only when no
                 current-shape write exists, and are normalized
     HISTORY   - every complete logical write, newest first
6. all_messages: decoded envelopes, deduplicated, newest first

GUARANTEES:
===========
- Identical input sets produce identical results (order-independent)
- assemble(x) == assemble(x + x)
- Bad entries never raise; they are counted in the report
"""

from __future__ import annotations
from dataclasses import replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
import time

from ..classification import FragmentClassifier, stamp_error
from ..codec import EnvelopeCodec
from ..config import ReassemblyConfig
from ..contracts.base import (
    DocumentType,
    Error,
    ErrorCode,
    Timestamp,
    consensus_sort_key,
)
from ..contracts.events import (
    AssemblyResult,
    AuditEventType,
    CanonicalDocument,
    ClassifiedFragment,
    FragmentKind,
    LogEntry,
    ProcessedMessage,
    ReassemblyReport,
    ReconstructionCandidate,
)
from ..domain.serialization import compact_json
from ..normalization import LegacyNormalizer
from ..observability import ObservabilityEngine
from ..reconstruction import GroupReconstructor
from ..repair import TruncationRepairer


class MergeStrategy(Enum):
    """How candidates of one DocumentType become the assembled view."""
    CANONICAL = "canonical"
    HISTORY = "history"


TYPE_STRATEGIES: Dict[DocumentType, MergeStrategy] = {
    DocumentType.PROFILE: MergeStrategy.CANONICAL,
    DocumentType.BUSINESS_DATA: MergeStrategy.CANONICAL,
    DocumentType.INSIGHT: MergeStrategy.HISTORY,
    DocumentType.COMPLETION: MergeStrategy.HISTORY,
}


class DocumentAssembler:
    """
    Read-path orchestrator.

    Stateless between calls: nothing derived from one assemble() call is
    reused by the next.
    """

    def __init__(
        self,
        config: Optional[ReassemblyConfig] = None,
        codec: Optional[EnvelopeCodec] = None,
        observability: Optional[ObservabilityEngine] = None,
    ):
        self._config = config or ReassemblyConfig()
        self._codec = codec or EnvelopeCodec(base64_min_length=self._config.base64_min_length)
        self._classifier = FragmentClassifier(self._codec, TruncationRepairer())
        self._reconstructor = GroupReconstructor(self._config)
        self._normalizer = LegacyNormalizer()
        self._observability = observability

    def assemble(self, owner_id: str, entries: Iterable[LogEntry]) -> AssemblyResult:
        start_time = time.time()
        entries = list(entries)
        report = ReassemblyReport(entries_seen=len(entries))

        # Layer 1: Classification
        fragments = self._classify(entries, report)

        # Layer 2: Transport reassembly
        fragments.extend(self._reassemble_transport(fragments, report))

        # Layer 3: Ownership
        usable = self._owned(owner_id, fragments, report)

        # Layer 4: Reconstruction
        candidates = self._candidates(usable, report)

        # Layer 5: Per-type strategies
        canonical: Dict[DocumentType, Optional[CanonicalDocument]] = {}
        histories: Dict[DocumentType, Tuple[Mapping, ...]] = {}
        for doc_type, strategy in TYPE_STRATEGIES.items():
            pool = candidates.get(doc_type, [])
            if strategy == MergeStrategy.CANONICAL:
                canonical[doc_type] = self._canonical(owner_id, doc_type, pool, report)
            else:
                histories[doc_type] = self._history(pool)

        result = AssemblyResult(
            owner_id=owner_id,
            profile=canonical.get(DocumentType.PROFILE),
            business_data=canonical.get(DocumentType.BUSINESS_DATA),
            insights=histories.get(DocumentType.INSIGHT, ()),
            completions=histories.get(DocumentType.COMPLETION, ()),
            all_messages=self._all_messages(usable),
            report=report,
        )

        self._record(owner_id, result, (time.time() - start_time) * 1000)
        return result

    # -------------------------------------------------------------------------
    # STAGES
    # -------------------------------------------------------------------------

    def _classify(self, entries: List[LogEntry], report: ReassemblyReport) -> List[ClassifiedFragment]:
        fragments = []
        for fragment in self._classifier.classify_all(entries):
            report.count(fragment.kind)
            self._note_outcome(fragment, report)
            fragments.append(fragment)
        return fragments

    def _reassemble_transport(
        self,
        fragments: List[ClassifiedFragment],
        report: ReassemblyReport,
    ) -> List[ClassifiedFragment]:
        rebuilt = []
        for group in self._reconstructor.group_transport_fragments(fragments):
            result = self._reconstructor.reassemble_transport(group)
            if result.is_failure:
                report.incomplete_groups.append(result.error)
                continue
            fragment = replace(self._classifier.classify(result.value), reconstructed=True)
            self._note_outcome(fragment, report)
            if fragment.is_usable:
                rebuilt.append(fragment)
        return rebuilt

    def _owned(
        self,
        owner_id: str,
        fragments: List[ClassifiedFragment],
        report: ReassemblyReport,
    ) -> List[ClassifiedFragment]:
        owned = []
        for fragment in fragments:
            if not fragment.is_usable:
                continue
            claimed = fragment.envelope.owner_id
            if claimed is not None and claimed != owner_id:
                report.foreign_owner.append(stamp_error(Error(
                    code=ErrorCode.FOREIGN_OWNER,
                    message="Envelope names a different owner",
                    timestamp=Timestamp.parse(fragment.entry.consensus_timestamp).value,
                    context=(('owner_id', claimed),),
                ), fragment.entry))
                continue
            owned.append(fragment)
        return owned

    def _candidates(
        self,
        fragments: List[ClassifiedFragment],
        report: ReassemblyReport,
    ) -> Dict[DocumentType, List[ReconstructionCandidate]]:
        candidates: Dict[DocumentType, List[ReconstructionCandidate]] = {}

        groups = self._reconstructor.group_application_chunks(fragments)
        chunked_writes = {group.key[:3] for group in groups}
        for group in groups:
            merged = self._reconstructor.merge_group(group)
            if merged.is_failure:
                report.incomplete_groups.append(merged.error)
                continue
            candidates.setdefault(merged.value.doc_type, []).append(merged.value)

        for fragment in fragments:
            if fragment.kind != FragmentKind.SINGLE_DOCUMENT:
                continue
            env = fragment.envelope
            # A cut-off chunk can lose its chunk fields and repair into a
            # whole-looking document of the same write
            if fragment.repaired and \
                    (env.owner_id or '', env.type.value, env.timestamp or '') in chunked_writes:
                report.dropped.append(stamp_error(Error(
                    code=ErrorCode.INCOMPLETE_GROUP,
                    message="Repaired entry belongs to a chunked write",
                    timestamp=Timestamp.parse(fragment.entry.consensus_timestamp).value,
                    context=(('type', env.type.value), ('timestamp', env.timestamp or '')),
                ), fragment.entry))
                continue
            candidate = self._reconstructor.candidate_from_single(fragment)
            candidates.setdefault(candidate.doc_type, []).append(candidate)

        return candidates

    def _canonical(
        self,
        owner_id: str,
        doc_type: DocumentType,
        candidates: List[ReconstructionCandidate],
        report: ReassemblyReport,
    ) -> Optional[CanonicalDocument]:
        # Legacy writes compete only when no current-shape candidate exists
        current = [c for c in candidates if self._normalizer.is_current_shape(c.document, doc_type)]
        legacy = not current
        ranked = self._reconstructor.rank(current or candidates, doc_type)
        if ranked.is_failure:
            return None

        ranking = ranked.value
        if ranking.ambiguity is not None:
            report.ambiguous.append(ranking.ambiguity)

        winner = ranking.winner
        return CanonicalDocument(
            owner_id=owner_id,
            doc_type=doc_type,
            document=self._normalizer.normalize(winner.document, doc_type),
            candidate=winner,
            normalized_from_legacy=legacy,
        )

    def _history(self, candidates: List[ReconstructionCandidate]) -> Tuple[Mapping, ...]:
        ordered = sorted(candidates, key=lambda c: c.digest)
        ordered = sorted(
            ordered,
            key=lambda c: (
                Timestamp.parse(c.timestamp).value,
                consensus_sort_key(c.consensus_timestamp),
                max(c.sequence_numbers, default=-1),
            ),
            reverse=True,
        )

        seen = set()
        history = []
        for candidate in ordered:
            key = (candidate.timestamp, candidate.digest)
            if key in seen:
                continue
            seen.add(key)
            record = dict(candidate.document)
            record['timestamp'] = candidate.timestamp
            history.append(record)
        return tuple(history)

    def _all_messages(self, fragments: List[ClassifiedFragment]) -> Tuple[ProcessedMessage, ...]:
        decoded = [f for f in fragments if not f.repaired]
        decoded.sort(
            key=lambda f: (f.entry.order_key, f.text or ''),
            reverse=True,
        )

        prefix = self._config.dedup_data_prefix
        seen = set()
        messages = []
        for fragment in decoded:
            env = fragment.envelope
            key = (env.type.value, env.timestamp, compact_json(env.data)[:prefix])
            if key in seen:
                continue
            seen.add(key)
            entry = fragment.entry
            messages.append(ProcessedMessage(
                sequence_number=entry.sequence_number,
                consensus_timestamp=entry.consensus_timestamp,
                payer_id=entry.payer_id,
                topic_id=entry.topic_id,
                type=env.type.value,
                timestamp=env.timestamp,
                owner_id=env.owner_id,
                data=env.data,
                chunk_index=env.chunk_index,
                total_chunks=env.total_chunks,
                reconstructed=fragment.reconstructed,
                message=fragment.text or '',
                chunk_info=entry.transport_chunk_info,
            ))
        return tuple(messages)

    # -------------------------------------------------------------------------
    # REPORTING
    # -------------------------------------------------------------------------

    @staticmethod
    def _note_outcome(fragment: ClassifiedFragment, report: ReassemblyReport):
        if fragment.repaired:
            report.repaired.append((fragment.entry.sequence_number, fragment.repair_strategy))
        if fragment.kind == FragmentKind.UNPARSEABLE:
            report.dropped.append(fragment.error)

    def _record(self, owner_id: str, result: AssemblyResult, duration_ms: float):
        if self._observability is None:
            return
        obs = self._observability
        report = result.report

        for kind, count in sorted(report.kind_counts.items()):
            obs.collect_metric("entries_classified_total", count, {"kind": kind})
        for sequence_number, strategy in report.repaired:
            obs.collect_metric("entries_repaired_total", 1, {"strategy": strategy})
            obs.log_audit(
                action="repair",
                entity_id=str(sequence_number),
                details=strategy,
                layer="repair",
                event_type=AuditEventType.REPAIR,
            )
        for error in report.dropped:
            obs.collect_metric("entries_dropped_total", 1)
            obs.log_audit(
                action="drop_entry",
                entity_id=error.context_value('sequence_number'),
                outcome="failure",
                details=error.message,
                layer="classification",
                event_type=AuditEventType.ERROR,
            )
        for error in report.incomplete_groups:
            obs.collect_metric(
                "incomplete_groups_total", 1,
                {"transport": error.context_value('transport') or 'false'},
            )
            obs.log_audit(
                action="withhold_group",
                entity_id=error.context_value('group_key'),
                outcome="failure",
                details=error.message,
                layer="reconstruction",
                event_type=AuditEventType.RECONSTRUCTION,
            )
        for error in report.ambiguous:
            obs.collect_metric(
                "ambiguous_rankings_total", 1,
                {"type": error.context_value('type') or ''},
            )
            obs.log_audit(
                action="tie_break",
                entity_id=owner_id,
                details=error.message,
                layer="reconstruction",
                event_type=AuditEventType.RECONSTRUCTION,
            )
        for error in report.foreign_owner:
            obs.log_audit(
                action="drop_foreign_owner",
                entity_id=error.context_value('sequence_number'),
                outcome="failure",
                details=error.context_value('owner_id') or '',
                layer="assembly",
                event_type=AuditEventType.ERROR,
            )

        obs.collect_metric("assembly_duration_ms", duration_ms)
        obs.log_audit(
            action="assemble",
            entity_id=owner_id,
            details=(
                f"entries={report.entries_seen} messages={len(result.all_messages)} "
                f"repaired={report.repaired_count} dropped={report.dropped_count}"
            ),
            layer="assembly",
            event_type=AuditEventType.ASSEMBLY,
            entity_type="owner",
        )
