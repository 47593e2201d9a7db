"""
Observability & Audit Layer

RESPONSIBILITY: Audit trail and metrics for the read and write paths
ALLOWED INPUTS: Audit calls from the assembly, transport and service layers
OUTPUTS: AuditLogEntry per layer, MetricPoint series, audit summaries

WHAT THIS LAYER MUST NOT DO:
============================
- Change what the observed layer returns
- Interpret or drop events
- Raise into the caller

BOUNDARY ENFORCEMENT:
=====================
- Receives values, never references to mutable layer state
- assemble() returns equal results with or without an engine attached
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from enum import Enum
import hashlib

# Contracts only; no imports from the observed layers
from ..contracts.base import Timestamp
from ..contracts.events import AuditEventType, AuditLogEntry, MetricPoint


LAYERS = ('classification', 'repair', 'reconstruction', 'assembly', 'transport')


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class LayerAuditLog:
    """Append-only audit records of one layer, in arrival order."""

    def __init__(self, layer: str):
        self.layer = layer
        self._records: List[AuditLogEntry] = []

    def append(self, record: AuditLogEntry):
        self._records.append(record)

    def query(
        self,
        event_type: Optional[AuditEventType] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        return [
            r for r in self._records
            if (event_type is None or r.event_type == event_type)
            and (entity_id is None or r.entity_id == entity_id)
            and (action is None or r.action == action)
        ]

    def __len__(self) -> int:
        return len(self._records)


# =============================================================================
# METRICS
# =============================================================================

class MetricKind(Enum):
    COUNTER = "counter"
    TIMING = "timing"


@dataclass(frozen=True)
class MetricSpec:
    """Name, kind and label set of a known metric."""
    name: str
    kind: MetricKind
    help: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRICS: Tuple[MetricSpec, ...] = (
    MetricSpec("entries_classified_total", MetricKind.COUNTER,
               "Log entries classified, by fragment kind", ("kind",)),
    MetricSpec("entries_repaired_total", MetricKind.COUNTER,
               "Entries recovered by the truncation repairer", ("strategy",)),
    MetricSpec("entries_dropped_total", MetricKind.COUNTER,
               "Entries that contributed nothing"),
    MetricSpec("incomplete_groups_total", MetricKind.COUNTER,
               "Chunk groups withheld for missing indices", ("transport",)),
    MetricSpec("ambiguous_rankings_total", MetricKind.COUNTER,
               "Rankings settled by the deterministic tie-break", ("type",)),
    MetricSpec("chunks_written_total", MetricKind.COUNTER,
               "Envelopes appended by the document writer", ("type",)),
    MetricSpec("assembly_duration_ms", MetricKind.TIMING,
               "Wall time of one assemble call"),
    MetricSpec("fetch_duration_ms", MetricKind.TIMING,
               "Wall time of one log fetch"),
)


class MetricsRegistry:
    """
    Time series per metric name.

    Unknown names are accepted and recorded without a spec.
    """

    def __init__(self, specs: Iterable[MetricSpec] = DEFAULT_METRICS):
        self._specs: Dict[str, MetricSpec] = {s.name: s for s in specs}
        self._series: Dict[str, List[MetricPoint]] = {name: [] for name in self._specs}

    def spec(self, name: str) -> Optional[MetricSpec]:
        return self._specs.get(name)

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        self._series.setdefault(name, []).append(MetricPoint(
            metric_name=name,
            value=value,
            timestamp=Timestamp.now(),
            labels=tuple(sorted((labels or {}).items())),
        ))

    def series(self, name: str) -> List[MetricPoint]:
        return list(self._series.get(name, ()))

    def latest(self, name: str) -> Optional[MetricPoint]:
        points = self._series.get(name)
        return points[-1] if points else None

    def total(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Sum of a series, restricted to points carrying every given label."""
        wanted = set((labels or {}).items())
        return sum(p.value for p in self._series.get(name, ()) if wanted <= set(p.labels))

    def summary(self, name: str) -> Dict[str, float]:
        values = [p.value for p in self._series.get(name, ())]
        if not values:
            return {}
        return {
            'count': len(values),
            'sum': sum(values),
            'min': min(values),
            'max': max(values),
            'mean': sum(values) / len(values),
        }


# =============================================================================
# ENGINE
# =============================================================================

@dataclass
class ObservabilityConfig:
    record_metrics: bool = True
    record_audit: bool = True


class ObservabilityEngine:
    """
    Facade the other layers report into.

    Keeps one LayerAuditLog per layer plus the combined trail in arrival
    order; audit ids hash the layer, action, entity and arrival number.
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._layers: Dict[str, LayerAuditLog] = {name: LayerAuditLog(name) for name in LAYERS}
        self._trail: List[AuditLogEntry] = []
        self._metrics = MetricsRegistry() if self._config.record_metrics else None
        self._arrivals = 0

    @property
    def metrics(self) -> Optional[MetricsRegistry]:
        return self._metrics

    def log_audit(
        self,
        action: str,
        entity_id: Optional[str] = None,
        outcome: str = "success",
        details: str = "",
        layer: str = "assembly",
        event_type: AuditEventType = AuditEventType.SYSTEM,
        entity_type: Optional[str] = None,
    ):
        if not self._config.record_audit or layer not in self._layers:
            return

        self._arrivals += 1
        digest = hashlib.sha256(
            f"{self._arrivals}:{layer}:{action}:{entity_id}".encode()
        ).hexdigest()[:16]

        record = AuditLogEntry(
            entry_id=f"audit_{digest}",
            event_type=event_type,
            timestamp=Timestamp.now(),
            layer=layer,
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            metadata=(('outcome', outcome), ('details', details)),
        )
        self._layers[layer].append(record)
        self._trail.append(record)

    def collect_metric(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        if self._metrics is not None:
            self._metrics.observe(name, value, labels)

    def audit_trail(self, layers: Optional[Iterable[str]] = None) -> List[AuditLogEntry]:
        if layers is None:
            return list(self._trail)
        wanted = set(layers)
        return [r for r in self._trail if r.layer in wanted]

    def layer_trail(self, layer: str) -> List[AuditLogEntry]:
        log = self._layers.get(layer)
        return log.query() if log else []

    def audit_summary(self) -> Dict:
        by_layer = {name: len(log) for name, log in self._layers.items() if len(log)}
        by_event: Dict[str, int] = {}
        failures = 0
        for record in self._trail:
            by_event[record.event_type.value] = by_event.get(record.event_type.value, 0) + 1
            if dict(record.metadata).get('outcome') == 'failure':
                failures += 1
        return {
            'total_entries': len(self._trail),
            'failures': failures,
            'by_layer': by_layer,
            'by_event_type': by_event,
        }
