"""
Tests for the fragment classifier.
"""

import pytest

from docledger.classification import FragmentClassifier
from docledger.contracts import (
    DocumentType,
    ErrorCode,
    FragmentKind,
    TransportChunkInfo,
)

from tests.chaos.fixtures import consensus, encode, make_entry


@pytest.fixture
def classifier():
    return FragmentClassifier()


class TestClassification:
    """Each decision branch in order."""

    def test_application_chunk(self, classifier):
        entry = make_entry(1, encode(DocumentType.PROFILE, {"a": 1}, "t0", index=0, total=2))
        fragment = classifier.classify(entry)

        assert fragment.kind == FragmentKind.APPLICATION_CHUNK
        assert fragment.envelope.chunk_index == 0
        assert not fragment.repaired

    def test_single_document(self, classifier):
        entry = make_entry(1, encode(DocumentType.PROFILE, {"a": 1}, "t0"))
        fragment = classifier.classify(entry)

        assert fragment.kind == FragmentKind.SINGLE_DOCUMENT
        assert fragment.envelope.data == {"a": 1}
        assert fragment.text.startswith('{"type":"profile"')

    def test_missing_timestamp_falls_back_to_consensus(self, classifier):
        entry = make_entry(4, '{"type":"profile","userId":"u","data":{"a":1}}')
        fragment = classifier.classify(entry)

        assert fragment.envelope.timestamp == consensus(4)

    def test_transport_fragment(self, classifier):
        info = TransportChunkInfo(index=0, total=2, group_key="0.0.1@1.0")
        entry = make_entry(1, b'{"type":"profile","da', info=info)

        fragment = classifier.classify(entry)

        assert fragment.kind == FragmentKind.TRANSPORT_FRAGMENT
        assert fragment.envelope is None
        assert fragment.error is None

    def test_transport_info_with_total_one_is_not_a_fragment(self, classifier):
        info = TransportChunkInfo(index=0, total=1, group_key="g")
        entry = make_entry(1, '{"type":"profile","data":{"name":"Ana",', info=info)

        fragment = classifier.classify(entry)

        assert fragment.kind == FragmentKind.SINGLE_DOCUMENT
        assert fragment.repaired

    def test_repaired_single_document(self, classifier):
        entry = make_entry(1, '{"type":"profile","data":{"name":"Ana","location":"SP",')
        fragment = classifier.classify(entry)

        assert fragment.kind == FragmentKind.SINGLE_DOCUMENT
        assert fragment.repaired
        assert fragment.repair_strategy == "trailing_field"
        assert fragment.envelope.owner_id is None
        assert fragment.envelope.timestamp == consensus(1)

    def test_repaired_chunk_stays_a_chunk(self, classifier):
        payload = ('{"type":"profile","chunkIndex":1,"totalChunks":3,'
                   '"timestamp":"t0","data":{"a":"x","b":"yy')
        fragment = classifier.classify(make_entry(1, payload))

        assert fragment.kind == FragmentKind.APPLICATION_CHUNK
        assert fragment.repaired
        assert fragment.envelope.data == {"a": "x"}
        assert fragment.envelope.timestamp == "t0"

    def test_unparseable(self, classifier):
        fragment = classifier.classify(make_entry(9, "%%% nothing here %%%"))

        assert fragment.kind == FragmentKind.UNPARSEABLE
        assert fragment.error.code == ErrorCode.DECODE_ERROR
        assert fragment.error.context_value("sequence_number") == "9"
        assert fragment.error.context_value("repair") is not None

    def test_wrong_shape_is_not_repaired(self, classifier):
        fragment = classifier.classify(make_entry(1, '{"type":"chat","data":{}}'))

        assert fragment.kind == FragmentKind.UNPARSEABLE
        assert fragment.error.code == ErrorCode.INVALID_ENVELOPE
        assert not fragment.repaired

    def test_errors_are_stamped_with_consensus_time(self, classifier):
        a = classifier.classify(make_entry(3, "garbage"))
        b = classifier.classify(make_entry(3, "garbage"))

        assert a.error == b.error

    def test_classify_all_preserves_input(self, classifier):
        entries = [
            make_entry(1, encode(DocumentType.INSIGHT, {"insights": []}, "t")),
            make_entry(2, "garbage"),
        ]
        fragments = classifier.classify_all(entries)

        assert isinstance(fragments, tuple)
        assert [f.entry for f in fragments] == entries
