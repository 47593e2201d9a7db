"""
Tests for the truncation repairer.

Every value a strategy recovers must appear verbatim in the damaged
payload: repair drops what it cannot read, it never invents.
"""

import json

import pytest

from docledger.contracts import DocumentType, ErrorCode
from docledger.repair import (
    BALANCED_OBJECT,
    FIELD_EXTRACTION,
    TRAILING_FIELD,
    TruncationRepairer,
)


def leaves(value):
    if isinstance(value, dict):
        for item in value.values():
            yield from leaves(item)
    elif isinstance(value, list):
        for item in value:
            yield from leaves(item)
    else:
        yield value


def assert_not_invented(obj, payload):
    for leaf in leaves(obj):
        assert json.dumps(leaf, ensure_ascii=False) in payload or str(leaf) in payload


@pytest.fixture
def repairer():
    return TruncationRepairer()


class TestTrailingField:

    def test_truncated_after_comma(self, repairer):
        payload = '{"type":"profile","data":{"name":"Ana","location":"SP",'
        result = repairer.repair(payload)

        assert result.is_success
        outcome = result.value
        assert outcome.strategy == TRAILING_FIELD
        assert outcome.obj["data"]["name"] == "Ana"
        assert_not_invented(outcome.obj, payload)

    def test_truncated_inside_string_drops_half_field(self, repairer):
        payload = '{"type":"profile","data":{"name":"Ana","location":"São Pa'
        outcome = repairer.repair(payload).value

        assert outcome.strategy == TRAILING_FIELD
        assert outcome.obj["data"] == {"name": "Ana"}

    def test_truncated_inside_array(self, repairer):
        payload = ('{"type":"ai_insight","data":{"insights":['
                   '{"id":"i1","title":"Post reels"},{"id":"i2","title":"Tr')
        outcome = repairer.repair(payload).value

        assert outcome.strategy == TRAILING_FIELD
        # The second insight keeps its one complete field; the cut title is dropped
        assert outcome.obj["data"]["insights"] == [
            {"id": "i1", "title": "Post reels"},
            {"id": "i2"},
        ]

    def test_dangling_key_is_dropped(self, repairer):
        payload = '{"type":"profile","data":{"name":"Ana","age":'
        outcome = repairer.repair(payload).value

        assert outcome.obj["data"] == {"name": "Ana"}

    def test_commas_inside_strings_are_not_cut_points(self, repairer):
        payload = '{"type":"profile","data":{"name":"Ana, Maria","fear":"x,'
        outcome = repairer.repair(payload).value

        assert outcome.obj["data"] == {"name": "Ana, Maria"}


class TestBalancedObject:

    def test_envelope_embedded_in_noise(self, repairer):
        payload = 'garbage{"type":"profile","userId":"u1","data":{"name":"Bea"}}trailing'
        outcome = repairer.repair(payload).value

        assert outcome.strategy == BALANCED_OBJECT
        assert outcome.obj == {"type": "profile", "userId": "u1", "data": {"name": "Bea"}}

    def test_prefers_object_with_data(self, repairer):
        payload = ('xx{"type":"profile"} {"type":"business_data","data":'
                   '{"business_name":"Acme"}} yy')
        outcome = repairer.repair(payload).value

        assert outcome.obj["type"] == "business_data"

    def test_ignores_objects_with_unknown_type(self, repairer):
        payload = 'xx{"type":"strategy","title":"t"} yy'
        assert repairer.repair(payload).is_failure


class TestFieldExtraction:

    def test_business_fields_and_arrays(self, repairer):
        payload = ('xx"type":"business_data","timestamp":"2024-05-01T00:00:00Z",'
                   '"data":{"business_name":"Acme","competitor_profiles":[{"name":"X"}],'
                   '"target_audience":{"age_range":"25-34","gender":')
        outcome = repairer.repair(payload).value

        assert outcome.strategy == FIELD_EXTRACTION
        assert outcome.obj["type"] == "business_data"
        assert outcome.obj["timestamp"] == "2024-05-01T00:00:00Z"
        data = outcome.obj["data"]
        assert data["business_name"] == "Acme"
        assert data["competitor_profiles"] == [{"name": "X"}]
        assert data["age_range"] == "25-34"
        assert "gender" not in data
        assert_not_invented(outcome.obj, payload)

    def test_profile_numeric_age(self, repairer):
        payload = 'xx"type":"user_profile","data":{"name":"Ana","age":31,"location":"S'
        outcome = repairer.repair(payload).value

        assert outcome.strategy == FIELD_EXTRACTION
        assert outcome.obj["data"] == {"name": "Ana", "age": 31}

    def test_insight_tuples(self, repairer):
        payload = ('xx"type":"ai_insight","data":{"insights":[{"id":"i1",'
                   '"title":"Post more","category":"growth"')
        outcome = repairer.repair(payload).value

        assert outcome.obj["data"]["insights"] == [
            {"id": "i1", "title": "Post more", "category": "growth"}
        ]

    def test_type_hint_when_tag_is_lost(self, repairer):
        payload = 'xx"missionId":"m1","title":"Record a reel"'
        outcome = repairer.repair(payload, type_hint=DocumentType.COMPLETION).value

        assert outcome.obj["type"] == "completion"
        assert outcome.obj["data"] == {"missionId": "m1", "title": "Record a reel"}

    def test_escaped_quotes_are_unescaped(self, repairer):
        payload = 'xx"type":"profile","data":{"name":"Ana \\"Nina\\" Souza","fear":'
        outcome = repairer.repair(payload).value

        assert outcome.obj["data"]["name"] == 'Ana "Nina" Souza'


class TestFailure:

    @pytest.mark.parametrize("payload", ["", "   ", "not json", "{", '{"type":"chat",'])
    def test_unrecoverable(self, repairer, payload):
        result = repairer.repair(payload)

        assert result.is_failure
        assert result.error.code == ErrorCode.REPAIR_FAILED

    def test_repair_is_deterministic(self, repairer):
        payload = '{"type":"profile","data":{"name":"Ana","location":"SP",'
        assert repairer.repair(payload).value == repairer.repair(payload).value
