"""
Property Tests for Reassembly
Verifies round trip, idempotence and order independence over generated
documents and delivery orders.
"""

from hypothesis import HealthCheck, given, settings, strategies as st
from hypothesis.strategies import composite

from docledger.assembly import DocumentAssembler
from docledger.chunking import Chunker
from docledger.contracts import DocumentType
from docledger.domain.serialization import serialized_size

from tests.chaos.fixtures import OWNER, encode, make_entry


PROPERTY_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

# Prefixed keys never collide with legacy flat field names
keys = st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=12).map(lambda k: "k_" + k)
scalars = st.one_of(
    st.text(max_size=60),
    st.integers(min_value=-10**6, max_value=10**6),
    st.booleans(),
)
values = st.recursive(
    scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(keys, children, max_size=5),
    ),
    max_leaves=12,
)
documents = st.dictionaries(keys, values, min_size=1, max_size=12)


@composite
def chunked_writes(draw):
    """One business_data document split with a generated byte budget."""
    document = draw(documents)
    max_bytes = draw(st.integers(min_value=40, max_value=600))
    chunks = Chunker().split(document, max_bytes)
    total = len(chunks)
    stamp = "2024-05-01T10:00:00Z"
    entries = [
        make_entry(i + 1, encode(
            DocumentType.BUSINESS_DATA, chunk, stamp,
            index=i if total > 1 else None,
            total=total if total > 1 else None,
        ))
        for i, chunk in enumerate(chunks)
    ]
    return document, max_bytes, chunks, entries


@composite
def mixed_logs(draw):
    """Several writes of different types interleaved on one topic."""
    entries = []
    sequence = 1
    for day in range(draw(st.integers(min_value=1, max_value=4))):
        doc_type = draw(st.sampled_from(list(DocumentType)))
        document = draw(documents)
        chunks = Chunker().split(document, draw(st.integers(min_value=40, max_value=400)))
        total = len(chunks)
        stamp = f"2024-05-0{day + 1}T10:00:00Z"
        for i, chunk in enumerate(chunks):
            entries.append(make_entry(sequence, encode(
                doc_type, chunk, stamp,
                index=i if total > 1 else None,
                total=total if total > 1 else None,
            )))
            sequence += 1
    return entries


# =============================================================================
# PROPERTY TESTS
# =============================================================================

@PROPERTY_SETTINGS
@given(chunked_writes())
def test_chunks_respect_budget_unless_unsplittable(write):
    """Every chunk fits the budget or is a single key that cannot be split further."""
    _, max_bytes, chunks, _ = write
    for chunk in chunks:
        if serialized_size(chunk) > max_bytes:
            assert len(chunk) == 1


@PROPERTY_SETTINGS
@given(chunked_writes())
def test_round_trip(write):
    """split -> encode -> classify -> group -> merge reproduces the document."""
    document, _, _, entries = write
    result = DocumentAssembler().assemble(OWNER, entries)
    assert result.business_data is not None
    assert dict(result.business_data.document) == document


@PROPERTY_SETTINGS
@given(chunked_writes(), st.randoms(use_true_random=False))
def test_round_trip_any_order(write, rnd):
    document, _, _, entries = write
    shuffled = list(entries)
    rnd.shuffle(shuffled)
    result = DocumentAssembler().assemble(OWNER, shuffled)
    assert dict(result.business_data.document) == document


@PROPERTY_SETTINGS
@given(mixed_logs())
def test_idempotence(entries):
    """assemble(x) == assemble(x + x)."""
    assembler = DocumentAssembler()
    assert assembler.assemble(OWNER, entries) == assembler.assemble(OWNER, entries + entries)


@PROPERTY_SETTINGS
@given(mixed_logs(), st.randoms(use_true_random=False))
def test_order_independence(entries, rnd):
    assembler = DocumentAssembler()
    shuffled = list(entries)
    rnd.shuffle(shuffled)
    assert assembler.assemble(OWNER, entries).to_json() == assembler.assemble(OWNER, shuffled).to_json()
    assert assembler.assemble(OWNER, entries) == assembler.assemble(OWNER, shuffled)
