"""
Reassembly Configuration
========================

All tunables for the write and read paths live here.

Anchor fields are configuration per DocumentType, not literals spread
through the ranking code. The default sets mirror what production
documents carry; they are not exhaustive.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Tuple
import os

from .contracts.base import DocumentType


FieldPath = Tuple[str, ...]


@dataclass(frozen=True)
class AnchorPolicy:
    """
    Which fields make a candidate document look authoritative.

    named_fields: identity fields that count only when populated with
                  something other than a known placeholder.
    rich_fields:  structurally rich fields (nested audience data,
                  competitor lists) that count when non-empty.
    """
    named_fields: Tuple[FieldPath, ...] = ()
    rich_fields: Tuple[FieldPath, ...] = ()
    placeholders: FrozenSet[str] = frozenset()


DEFAULT_PLACEHOLDERS: FrozenSet[str] = frozenset({
    '', 'user', 'unknown', 'anonymous', 'n/a', 'na', 'none', 'null',
    'undefined', 'usuário', 'usuario', 'test', 'placeholder',
})


def default_anchor_policies() -> Dict[DocumentType, AnchorPolicy]:
    return {
        DocumentType.PROFILE: AnchorPolicy(
            named_fields=(('personal', 'name'), ('name',)),
            rich_fields=(
                ('business', 'target_audience'),
                ('business', 'competitors'),
                ('pain_points',),
                ('goals_aspirations',),
            ),
            placeholders=DEFAULT_PLACEHOLDERS,
        ),
        DocumentType.BUSINESS_DATA: AnchorPolicy(
            named_fields=(('business_name',),),
            rich_fields=(
                ('competitor_profiles',),
                ('target_audience', 'pain_points'),
                ('target_audience', 'goals_aspirations'),
                ('pain_points',),
                ('goals_aspirations',),
            ),
            placeholders=DEFAULT_PLACEHOLDERS,
        ),
        DocumentType.INSIGHT: AnchorPolicy(
            rich_fields=(('insights',),),
        ),
        DocumentType.COMPLETION: AnchorPolicy(
            named_fields=(('missionId',), ('mission_id',), ('title',)),
            placeholders=DEFAULT_PLACEHOLDERS,
        ),
    }


@dataclass
class ReassemblyConfig:
    """Configuration for chunking, decoding, transport and assembly."""
    max_chunk_bytes: int = 800
    base64_min_length: int = 20
    dedup_data_prefix: int = 100
    fetch_limit: int = 100
    fetch_order: str = "desc"
    transport_max_message_bytes: int = 1024
    mirror_node_url: str = "https://testnet.mirrornode.hedera.com"
    http_timeout_seconds: float = 15.0
    anchor_policies: Dict[DocumentType, AnchorPolicy] = field(
        default_factory=default_anchor_policies
    )

    def __post_init__(self):
        if self.max_chunk_bytes < 1:
            raise ValueError("max_chunk_bytes must be positive")
        if self.fetch_order not in ("asc", "desc"):
            raise ValueError("fetch_order must be 'asc' or 'desc'")

    def anchor_policy(self, doc_type: DocumentType) -> AnchorPolicy:
        return self.anchor_policies.get(doc_type, AnchorPolicy())

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> ReassemblyConfig:
        """Build a config from DOCLEDGER_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = ReassemblyConfig()
        return ReassemblyConfig(
            max_chunk_bytes=int(env.get("DOCLEDGER_MAX_CHUNK_BYTES", defaults.max_chunk_bytes)),
            base64_min_length=int(env.get("DOCLEDGER_BASE64_MIN_LENGTH", defaults.base64_min_length)),
            dedup_data_prefix=int(env.get("DOCLEDGER_DEDUP_DATA_PREFIX", defaults.dedup_data_prefix)),
            fetch_limit=int(env.get("DOCLEDGER_FETCH_LIMIT", defaults.fetch_limit)),
            fetch_order=env.get("DOCLEDGER_FETCH_ORDER", defaults.fetch_order),
            transport_max_message_bytes=int(
                env.get("DOCLEDGER_TRANSPORT_MAX_MESSAGE_BYTES", defaults.transport_max_message_bytes)
            ),
            mirror_node_url=env.get("DOCLEDGER_MIRROR_NODE_URL", defaults.mirror_node_url),
            http_timeout_seconds=float(
                env.get("DOCLEDGER_HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds)
            ),
        )
