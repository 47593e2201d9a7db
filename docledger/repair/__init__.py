"""
Truncation Repair Layer

RESPONSIBILITY: Best-effort recovery of a parseable object from a payload
                that failed direct JSON parsing
ALLOWED INPUTS: Unwrapped payload text (+ optional DocumentType hint)
OUTPUTS: Result[RepairOutcome] or explicit REPAIR_FAILED

STRATEGIES (first success wins):
================================
(a) trailing_field   - cut at the last complete field, close open containers
(b) balanced_object  - parse balanced-brace substrings, prefer type+data
(c) field_extraction - regex field tables per DocumentType

WHAT THIS LAYER MUST NOT DO:
============================
- Fabricate values: a half-written field is dropped, never completed
- Read the clock or generate random ids (repair is deterministic)
- Decide which document wins
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Pattern, Tuple
import json
import re

from ..contracts.base import DocumentType, Error, ErrorCode, Result


TRAILING_FIELD = "trailing_field"
BALANCED_OBJECT = "balanced_object"
FIELD_EXTRACTION = "field_extraction"

# Cut points tried for strategy (a), newest first
MAX_CUT_ATTEMPTS = 8


@dataclass(frozen=True)
class RepairOutcome:
    """A recovered JSON object and the strategy that produced it."""
    obj: Dict[str, Any]
    strategy: str


# =============================================================================
# FIELD TABLES (strategy c)
# =============================================================================

def _string_field(key: str) -> Pattern:
    return re.compile(r'"%s"\s*:\s*"((?:[^"\\]|\\.)*)"' % re.escape(key))


def _number_field(key: str) -> Pattern:
    return re.compile(r'"%s"\s*:\s*(-?\d+(?:\.\d+)?)\s*[,}\]]' % re.escape(key))


def _array_field(key: str) -> Pattern:
    return re.compile(r'"%s"\s*:\s*\[([^\]]+)\]' % re.escape(key))


_PROFILE_STRING_KEYS = (
    'name', 'location', 'primary_motivation', 'biggest_challenge',
    'success_definition', 'work_style', 'dream_lifestyle', 'impact_goal',
    'fear', 'industry', 'age_range', 'gender', 'income_level',
    'education_level', 'pain_points', 'goals_aspirations', 'main_offer',
    'pricing_strategy', 'clerkId',
    'has_visual_identity', 'has_content_templates', 'has_brand_guidelines',
    'has_website', 'has_social_media', 'has_email_marketing', 'has_paid_ads',
    'has_analytics', 'has_crm', 'has_automation',
)

_BUSINESS_STRING_KEYS = (
    'business_name', 'business_description', 'industry', 'age_range',
    'gender', 'income_level', 'education_level', 'location', 'pain_points',
    'goals_aspirations', 'target_audience', 'competitive_gaps', 'clerkId',
)

_BUSINESS_ARRAY_KEYS = (
    'competitor_profiles', 'social_media_platforms', 'content_types',
    'marketing_channels', 'business_goals', 'challenges', 'strengths',
    'weaknesses', 'opportunities', 'threats',
)

_COMPLETION_STRING_KEYS = (
    'missionId', 'mission_id', 'title', 'status', 'completedAt',
    'completed_at', 'category', 'notes',
)

_INSIGHT_TUPLE_KEYS = ('id', 'title', 'type', 'category', 'priority')

_TYPE_FIELD = _string_field('type')
_TIMESTAMP_FIELD = _string_field('timestamp')
_OWNER_FIELD = _string_field('userId')
_SUMMARY_FIELD = _string_field('summary')
_INSIGHT_OBJECT = re.compile(r'\{[^{}]*"id"\s*:\s*"[^"]+"[^{}]*\}')


def _unescape(raw: str) -> str:
    try:
        return json.loads('"%s"' % raw)
    except ValueError:
        return raw


class TruncationRepairer:
    """
    Recover partial structure from truncated or corrupted payloads.

    Every strategy is a pure function of the input text.
    """

    def repair(self, text: str, type_hint: Optional[DocumentType] = None) -> Result:
        if not isinstance(text, str) or not text.strip():
            return Result.failure(self._failure("Empty payload"))

        stripped = text.strip()

        for strategy, attempt in (
            (TRAILING_FIELD, self._close_trailing_field),
            (BALANCED_OBJECT, self._balanced_object),
        ):
            obj = attempt(stripped)
            if obj is not None and _is_envelope_like(obj):
                return Result.success(RepairOutcome(obj=obj, strategy=strategy))

        obj = self._extract_fields(stripped, type_hint)
        if obj is not None:
            return Result.success(RepairOutcome(obj=obj, strategy=FIELD_EXTRACTION))

        return Result.failure(self._failure(
            "No repair strategy recovered an object",
            preview=stripped[:80],
        ))

    # -------------------------------------------------------------------------
    # (a) TRAILING FIELD
    # -------------------------------------------------------------------------

    def _close_trailing_field(self, text: str) -> Optional[Dict[str, Any]]:
        if not text.startswith('{') or text.endswith('}'):
            return None

        cut_points = _comma_cut_points(text)
        for position, closers in reversed(cut_points[-MAX_CUT_ATTEMPTS:]):
            try:
                parsed = json.loads(text[:position] + closers)
            except ValueError:
                continue
            if isinstance(parsed, dict):
                return parsed
        return None

    # -------------------------------------------------------------------------
    # (b) BALANCED OBJECT
    # -------------------------------------------------------------------------

    def _balanced_object(self, text: str) -> Optional[Dict[str, Any]]:
        # (has data, size) orders envelopes ahead of bare typed objects
        best: Optional[Tuple[Tuple[bool, int], Dict[str, Any]]] = None
        for start, end in _balanced_spans(text):
            try:
                parsed = json.loads(text[start:end])
            except ValueError:
                continue
            if not isinstance(parsed, dict):
                continue
            if DocumentType.from_wire(parsed.get('type')) is None:
                continue
            rank = ('data' in parsed, end - start)
            if best is None or rank > best[0]:
                best = (rank, parsed)
        return best[1] if best else None

    # -------------------------------------------------------------------------
    # (c) FIELD EXTRACTION
    # -------------------------------------------------------------------------

    def _extract_fields(
        self,
        text: str,
        type_hint: Optional[DocumentType],
    ) -> Optional[Dict[str, Any]]:
        wire_type = None
        match = _TYPE_FIELD.search(text)
        if match and DocumentType.from_wire(match.group(1)) is not None:
            wire_type = match.group(1)
            doc_type = DocumentType.from_wire(wire_type)
        elif type_hint is not None:
            doc_type = type_hint
            wire_type = type_hint.wire_name
        else:
            return None

        data_start = text.find('"data"')
        body = text[data_start:] if data_start >= 0 else text

        if doc_type == DocumentType.PROFILE:
            data = self._extract_profile(body)
        elif doc_type == DocumentType.BUSINESS_DATA:
            data = self._extract_business(body)
        elif doc_type == DocumentType.INSIGHT:
            data = self._extract_insight(body)
        else:
            data = _extract_strings(body, _COMPLETION_STRING_KEYS)

        if not data:
            return None

        obj: Dict[str, Any] = {'type': wire_type, 'data': data}
        head = text[:data_start] if data_start >= 0 else ''
        for key, pattern in (('timestamp', _TIMESTAMP_FIELD), ('userId', _OWNER_FIELD)):
            found = pattern.search(head) or pattern.search(text)
            if found:
                obj[key] = _unescape(found.group(1))
        return obj

    def _extract_profile(self, body: str) -> Dict[str, Any]:
        data = _extract_strings(body, _PROFILE_STRING_KEYS)
        age = _number_field('age').search(body)
        if age:
            data['age'] = int(float(age.group(1)))
        else:
            age_text = _string_field('age').search(body)
            if age_text:
                data['age'] = _unescape(age_text.group(1))
        return data

    def _extract_business(self, body: str) -> Dict[str, Any]:
        data = _extract_strings(body, _BUSINESS_STRING_KEYS)
        for key in _BUSINESS_ARRAY_KEYS:
            found = _array_field(key).search(body)
            if not found:
                continue
            try:
                data[key] = json.loads('[%s]' % found.group(1))
            except ValueError:
                data[key] = found.group(1)
        return data

    def _extract_insight(self, body: str) -> Dict[str, Any]:
        insights_at = body.find('"insights"')
        scope = body[insights_at:] if insights_at >= 0 else body

        insights: List[Dict[str, Any]] = []
        for candidate in _INSIGHT_OBJECT.findall(scope):
            try:
                parsed = json.loads(candidate)
            except ValueError:
                continue
            if isinstance(parsed, dict) and parsed.get('id') and parsed.get('title'):
                insights.append(parsed)

        if not insights:
            insights = _extract_insight_tuples(scope)

        data: Dict[str, Any] = {}
        if insights:
            data['insights'] = insights
        summary = _SUMMARY_FIELD.search(body)
        if summary:
            data['summary'] = _unescape(summary.group(1))
        return data

    @staticmethod
    def _failure(message: str, **context: str) -> Error:
        return Error(
            code=ErrorCode.REPAIR_FAILED,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((k, str(v)) for k, v in sorted(context.items())),
        )


# =============================================================================
# SCANNING HELPERS
# =============================================================================

_CLOSERS = {'{': '}', '[': ']'}


def _comma_cut_points(text: str) -> List[Tuple[int, str]]:
    """
    Positions of commas outside string literals, each with the closing
    sequence needed to balance every container open at that point.
    """
    points: List[Tuple[int, str]] = []
    stack: List[str] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in '}]':
            if stack:
                stack.pop()
        elif ch == ',':
            points.append((i, ''.join(reversed(stack))))
    return points


def _is_envelope_like(obj: Dict[str, Any]) -> bool:
    return (
        DocumentType.from_wire(obj.get('type')) is not None
        and isinstance(obj.get('data'), dict)
    )


def _balanced_spans(text: str) -> List[Tuple[int, int]]:
    """(start, end) of every balanced {...} span, string-aware."""
    spans: List[Tuple[int, int]] = []
    starts: List[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '{':
            starts.append(i)
        elif ch == '}' and starts:
            spans.append((starts.pop(), i + 1))
    return spans


def _extract_strings(body: str, keys: Tuple[str, ...]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key in keys:
        found = _string_field(key).search(body)
        if found:
            data[key] = _unescape(found.group(1))
    return data


def _extract_insight_tuples(scope: str) -> List[Dict[str, Any]]:
    columns = {
        key: [_unescape(m) for m in _string_field(key).findall(scope)]
        for key in _INSIGHT_TUPLE_KEYS
    }
    count = min(len(columns['id']), len(columns['title']))
    insights = []
    for i in range(count):
        insight = {}
        for key in _INSIGHT_TUPLE_KEYS:
            values = columns[key]
            if i < len(values):
                insight[key] = values[i]
        insights.append(insight)
    return insights
