"""
Chaos Fixtures

Explicit corruption scenarios for reassembly testing.

RULES:
======
1. All fixtures are EXPLICIT, not random
2. Each fixture declares its corruption type
3. Each fixture documents the expected invariant
4. Consensus timestamps are fixed so every run is identical
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from enum import Enum

from docledger.chunking import Chunker
from docledger.codec import EnvelopeCodec
from docledger.contracts import DocumentType, LogEntry, TransportChunkInfo
from docledger.domain.serialization import compact_json


OWNER = "user_2abc"
OTHER_OWNER = "user_9xyz"
TOPIC = "0.0.4242"
PAYER = "0.0.1001"
BASE_SECONDS = 1700000000


# =============================================================================
# CORRUPTION TYPES
# =============================================================================

class CorruptionType(Enum):
    """Type of corruption being injected."""
    OUT_OF_ORDER = "out_of_order"
    TRUNCATION = "truncation"
    DUPLICATION = "duplication"
    MISSING_CHUNK = "missing_chunk"
    COMPETING_WRITES = "competing_writes"
    TRANSPORT_SPLIT = "transport_split"
    FOREIGN_OWNER = "foreign_owner"


class ExpectedInvariant(Enum):
    """What invariant this scenario expects to hold."""
    ROUND_TRIP = "round_trip"
    PARTIAL_RECOVERY = "partial_recovery"
    DUPLICATES_COLLAPSE = "duplicates_collapse"
    INCOMPLETE_WITHHELD = "incomplete_withheld"
    RICHEST_WINS = "richest_wins"
    OWNER_ISOLATION = "owner_isolation"


@dataclass(frozen=True)
class ChaosScenario:
    """A complete chaos test scenario."""
    scenario_id: str
    corruption_type: CorruptionType
    expected_invariant: ExpectedInvariant
    description: str
    entries: Tuple[LogEntry, ...]
    document: Optional[Mapping[str, Any]] = None


# =============================================================================
# BUILDERS
# =============================================================================

def consensus(offset: int) -> str:
    return f"{BASE_SECONDS + offset}.000000000"


def make_entry(
    sequence_number: int,
    payload: Union[str, bytes],
    offset: Optional[int] = None,
    info: Optional[TransportChunkInfo] = None,
) -> LogEntry:
    return LogEntry(
        sequence_number=sequence_number,
        consensus_timestamp=consensus(sequence_number if offset is None else offset),
        payer_id=PAYER,
        payload=payload,
        transport_chunk_info=info,
        topic_id=TOPIC,
    )


def encode(
    doc_type: DocumentType,
    data: Mapping[str, Any],
    timestamp: str,
    owner: str = OWNER,
    index: Optional[int] = None,
    total: Optional[int] = None,
) -> bytes:
    return EnvelopeCodec().encode(doc_type, owner, data, index, total, timestamp=timestamp)


def encode_data_first(
    doc_type: DocumentType,
    data: Mapping[str, Any],
    timestamp: str,
    index: int,
    total: int,
    owner: str = OWNER,
) -> bytes:
    """Chunk envelope laid out by older writers: chunk fields after data."""
    return compact_json({
        "type": doc_type.wire_name,
        "timestamp": timestamp,
        "userId": owner,
        "data": dict(data),
        "chunkIndex": index,
        "totalChunks": total,
    }).encode("utf-8")


def write_entries(
    doc_type: DocumentType,
    document: Mapping[str, Any],
    timestamp: str,
    start_sequence: int = 1,
    max_bytes: int = 800,
    owner: str = OWNER,
) -> List[LogEntry]:
    """Entries a single chunked write leaves on the log, in write order."""
    chunks = Chunker().split(document, max_bytes)
    total = len(chunks)
    entries = []
    for index, chunk in enumerate(chunks):
        payload = encode(
            doc_type, chunk, timestamp, owner,
            index=index if total > 1 else None,
            total=total if total > 1 else None,
        )
        entries.append(make_entry(start_sequence + index, payload))
    return entries


def three_chunk_document() -> Dict[str, str]:
    """2392 bytes serialized; each key alone is 798 bytes."""
    return {"a": "x" * 790, "b": "y" * 790, "c": "z" * 790}


def rich_business_document() -> Dict[str, Any]:
    """12 top-level fields including competitor_profiles."""
    return {
        "business_name": "Casa Verde",
        "business_description": "Plant shop and workshops",
        "industry": "retail",
        "age_range": "25-34",
        "gender": "any",
        "income_level": "middle",
        "target_audience": {
            "pain_points": "no time for plant care",
            "goals_aspirations": "green home",
        },
        "competitor_profiles": [
            {"name": "Leafy", "instagram": "@leafy"},
            {"name": "Urban Jungle", "instagram": "@urbanjungle"},
        ],
        "social_media_platforms": ["instagram", "tiktok"],
        "content_types": ["reels", "carousels"],
        "marketing_channels": ["instagram"],
        "business_goals": ["double workshop attendance"],
    }


def sparse_business_document() -> Dict[str, Any]:
    """4 fields, no anchor fields."""
    return {
        "industry": "retail",
        "business_description": "Plant shop",
        "marketing_channels": ["flyers"],
        "challenges": ["visibility"],
    }


# =============================================================================
# SCENARIOS
# =============================================================================

def make_reversed_chunks_scenario() -> ChaosScenario:
    """
    A 2392-byte profile written with an 800-byte ceiling yields three
    chunks; they are returned newest first.

    EXPECTED: The merged document equals the original.
    """
    document = three_chunk_document()
    entries = write_entries(DocumentType.PROFILE, document, "2024-05-01T10:00:00Z")
    return ChaosScenario(
        scenario_id="reversed_chunks",
        corruption_type=CorruptionType.OUT_OF_ORDER,
        expected_invariant=ExpectedInvariant.ROUND_TRIP,
        description="Three chunks fed in reverse consensus order",
        entries=tuple(reversed(entries)),
        document=document,
    )


def make_competing_business_scenario(rich_first: bool) -> ChaosScenario:
    """
    Two whole-document business_data writes: 4 fields without anchors
    and 12 fields with competitor_profiles.

    EXPECTED: The 12-field write wins whichever was written last.
    """
    rich = rich_business_document()
    sparse = sparse_business_document()
    first, second = (rich, sparse) if rich_first else (sparse, rich)
    entries = (
        make_entry(1, encode(DocumentType.BUSINESS_DATA, first, "2024-05-01T10:00:00Z")),
        make_entry(2, encode(DocumentType.BUSINESS_DATA, second, "2024-05-02T10:00:00Z")),
    )
    return ChaosScenario(
        scenario_id=f"competing_business_{'rich' if rich_first else 'sparse'}_first",
        corruption_type=CorruptionType.COMPETING_WRITES,
        expected_invariant=ExpectedInvariant.RICHEST_WINS,
        description="Sparse and rich whole-document writes for one owner",
        entries=entries,
        document=rich,
    )


TRUNCATED_PROFILE = '{"type":"profile","data":{"name":"Ana","location":"SP",'


def make_truncated_profile_scenario() -> ChaosScenario:
    """
    A profile payload cut off after its last complete field.

    EXPECTED: name is recovered, nothing is invented.
    """
    return ChaosScenario(
        scenario_id="truncated_profile",
        corruption_type=CorruptionType.TRUNCATION,
        expected_invariant=ExpectedInvariant.PARTIAL_RECOVERY,
        description="Payload truncated mid-object",
        entries=(make_entry(1, TRUNCATED_PROFILE),),
    )


def make_duplicate_flood_scenario(copies: int = 5) -> ChaosScenario:
    """
    The same insight envelope appended several times.

    EXPECTED: all_messages and the insight history hold it once.
    """
    payload = encode(
        DocumentType.INSIGHT,
        {"insights": [{"id": "i1", "title": "Post reels twice a week"}]},
        "2024-05-03T08:00:00Z",
    )
    return ChaosScenario(
        scenario_id="duplicate_flood",
        corruption_type=CorruptionType.DUPLICATION,
        expected_invariant=ExpectedInvariant.DUPLICATES_COLLAPSE,
        description="Identical envelope appended repeatedly",
        entries=tuple(make_entry(i + 1, payload) for i in range(copies)),
    )


def make_missing_chunk_scenario() -> ChaosScenario:
    """
    A three-chunk profile write whose middle chunk never arrived, next to
    an older complete single-document profile.

    EXPECTED: The incomplete group is withheld; the older profile wins.
    """
    chunks = write_entries(
        DocumentType.PROFILE, three_chunk_document(), "2024-06-01T00:00:00Z",
        start_sequence=10,
    )
    older = make_entry(1, encode(
        DocumentType.PROFILE,
        {"personal": {"name": "Ana"}},
        "2024-01-01T00:00:00Z",
    ))
    return ChaosScenario(
        scenario_id="missing_chunk",
        corruption_type=CorruptionType.MISSING_CHUNK,
        expected_invariant=ExpectedInvariant.INCOMPLETE_WITHHELD,
        description="Chunk 1 of 3 missing",
        entries=(older, chunks[0], chunks[2]),
    )


CUT_CHUNK_PARTS = (
    {"personal": {"name": "Ana", "location": "SP"}},
    {"business": {"industry": "education"}},
    {"business": {"main_offer": "course", "pricing_strategy": "tiered"}},
)


def make_cut_chunk_scenario(data_first: bool) -> ChaosScenario:
    """
    A three-chunk profile whose last chunk was cut just before
    "pricing_strategy". When the envelope puts data first, the cut also
    takes the chunk fields and the remainder repairs into what looks like
    a whole profile.

    EXPECTED: No profile; the group is reported incomplete.
    """
    stamp = "2024-06-01T00:00:00Z"
    payloads = [
        encode_data_first(DocumentType.PROFILE, part, stamp, index, 3) if data_first
        else encode(DocumentType.PROFILE, part, stamp, index=index, total=3)
        for index, part in enumerate(CUT_CHUNK_PARTS)
    ]
    payloads[2] = payloads[2][:payloads[2].index(b'"pricing_strategy"')]
    return ChaosScenario(
        scenario_id="cut_chunk_data_first" if data_first else "cut_chunk",
        corruption_type=CorruptionType.TRUNCATION,
        expected_invariant=ExpectedInvariant.INCOMPLETE_WITHHELD,
        description="Last chunk of a profile write cut inside data",
        entries=tuple(make_entry(i + 1, p) for i, p in enumerate(payloads)),
    )


def make_transport_split_scenario(fragment_bytes: int = 64) -> ChaosScenario:
    """
    One envelope split by the transport into raw byte fragments without
    regard for character boundaries, delivered out of order.

    EXPECTED: The concatenated payload decodes to the original document.
    """
    document = {"personal": {"name": "João", "location": "São Paulo"}, "notes": "ação " * 20}
    raw = encode(DocumentType.PROFILE, document, "2024-05-04T12:00:00Z")
    parts = [raw[i:i + fragment_bytes] for i in range(0, len(raw), fragment_bytes)]
    group_key = f"{PAYER}@{consensus(0)}"
    entries = [
        make_entry(
            i + 1, part,
            info=TransportChunkInfo(index=i, total=len(parts), group_key=group_key),
        )
        for i, part in enumerate(parts)
    ]
    return ChaosScenario(
        scenario_id="transport_split",
        corruption_type=CorruptionType.TRANSPORT_SPLIT,
        expected_invariant=ExpectedInvariant.ROUND_TRIP,
        description="Transport fragments in reverse order",
        entries=tuple(reversed(entries)),
        document=document,
    )


def make_foreign_owner_scenario() -> ChaosScenario:
    """
    A topic holding an envelope that names another owner.

    EXPECTED: Only the requested owner's document is assembled.
    """
    return ChaosScenario(
        scenario_id="foreign_owner",
        corruption_type=CorruptionType.FOREIGN_OWNER,
        expected_invariant=ExpectedInvariant.OWNER_ISOLATION,
        description="Envelope for a different owner on the same topic",
        entries=(
            make_entry(1, encode(
                DocumentType.PROFILE, {"personal": {"name": "Ana"}},
                "2024-05-01T00:00:00Z",
            )),
            make_entry(2, encode(
                DocumentType.PROFILE,
                {"personal": {"name": "Mallory"}, "business": {"industry": "x"}},
                "2024-05-02T00:00:00Z",
                owner=OTHER_OWNER,
            )),
        ),
    )


def get_all_scenarios() -> List[ChaosScenario]:
    return [
        make_reversed_chunks_scenario(),
        make_competing_business_scenario(rich_first=True),
        make_competing_business_scenario(rich_first=False),
        make_truncated_profile_scenario(),
        make_duplicate_flood_scenario(),
        make_missing_chunk_scenario(),
        make_cut_chunk_scenario(data_first=False),
        make_cut_chunk_scenario(data_first=True),
        make_transport_split_scenario(),
        make_foreign_owner_scenario(),
    ]
