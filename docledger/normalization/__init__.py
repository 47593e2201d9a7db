"""
Legacy Normalization Layer

RESPONSIBILITY: Map flat documents written by older clients onto the
                current nested shape
ALLOWED INPUTS: Winning candidate documents
OUTPUTS: Documents in current shape (new dicts; inputs untouched)

SHAPES:
=======
profile (current):
    {personal: {...}, business: {industry, target_audience: {...},
     competitors, content_analysis: {...}, main_offer, pricing_strategy},
     created_at, updated_at}
business_data (current):
    flat identity fields + nested target_audience: {...}

Documents already in current shape pass through unchanged.
Insight and completion documents have no legacy shape.
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Tuple

from ..contracts.base import DocumentType


_PERSONAL_KEYS = (
    'name', 'location', 'primary_motivation', 'biggest_challenge',
    'success_definition', 'core_values', 'work_style', 'dream_lifestyle',
    'impact_goal', 'fear',
)

_AUDIENCE_KEYS = (
    'age_range', 'gender', 'income_level', 'education_level', 'location',
    'pain_points', 'goals_aspirations',
)

_CONTENT_ANALYSIS_KEYS = ('engaging_aspects', 'visual_style', 'competitive_gaps')

_PROFILE_BUSINESS_KEYS = ('industry', 'competitors', 'main_offer', 'pricing_strategy')

_PROFILE_META_KEYS = ('created_at', 'updated_at')

_PROFILE_FLAT_KEYS = frozenset(
    _PERSONAL_KEYS + _AUDIENCE_KEYS + _CONTENT_ANALYSIS_KEYS
    + _PROFILE_BUSINESS_KEYS + ('age',)
)

_BUSINESS_TOP_KEYS = (
    'industry', 'age_range', 'gender', 'income_level', 'business_name',
    'business_description',
)

_BUSINESS_TAIL_KEYS = (
    'competitive_gaps', 'competitor_profiles', 'social_media_platforms',
    'content_types', 'marketing_channels', 'business_goals', 'challenges',
    'strengths', 'weaknesses', 'opportunities', 'threats',
)


def prune_empty(value: Any) -> Any:
    """
    Recursively drop None values and containers left empty.

    Returns None when the value itself prunes away. Empty strings are
    data and are kept.
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        cleaned = {}
        for key, item in value.items():
            pruned = prune_empty(item)
            if pruned is not None:
                cleaned[key] = pruned
        return cleaned or None
    if isinstance(value, (list, tuple)):
        cleaned_list = [p for p in (prune_empty(item) for item in value) if p is not None]
        return cleaned_list or None
    return value


def _pick(source: Mapping[str, Any], keys: Tuple[str, ...]) -> Dict[str, Any]:
    return {key: source.get(key) for key in keys}


class LegacyNormalizer:
    """Stateless converter between legacy flat and current nested shapes."""

    def is_current_shape(self, document: Mapping[str, Any], doc_type: DocumentType) -> bool:
        if doc_type == DocumentType.PROFILE:
            if isinstance(document.get('personal'), Mapping) \
                    or isinstance(document.get('business'), Mapping):
                return True
            return not any(key in _PROFILE_FLAT_KEYS for key in document)

        if doc_type == DocumentType.BUSINESS_DATA:
            if isinstance(document.get('target_audience'), Mapping):
                return True
            return not any(key in document for key in _AUDIENCE_KEYS)

        return True

    def normalize(self, flat: Mapping[str, Any], doc_type: DocumentType) -> Dict[str, Any]:
        if self.is_current_shape(flat, doc_type):
            return dict(flat)
        if doc_type == DocumentType.PROFILE:
            return self._profile(flat)
        return self._business_data(flat)

    # -------------------------------------------------------------------------
    # CONVERTERS
    # -------------------------------------------------------------------------

    def _profile(self, flat: Mapping[str, Any]) -> Dict[str, Any]:
        personal = _pick(flat, _PERSONAL_KEYS)
        personal['age'] = flat.get('age') or flat.get('age_range')

        business = {
            'industry': flat.get('industry'),
            'target_audience': _pick(flat, _AUDIENCE_KEYS),
            'competitors': flat.get('competitors'),
            'content_analysis': _pick(flat, _CONTENT_ANALYSIS_KEYS),
            'main_offer': flat.get('main_offer'),
            'pricing_strategy': flat.get('pricing_strategy'),
        }

        document: Dict[str, Any] = {
            'personal': personal,
            'business': business,
        }
        document.update(_pick(flat, _PROFILE_META_KEYS))
        self._carry_unmapped(document, flat, _PROFILE_FLAT_KEYS | set(_PROFILE_META_KEYS))
        return prune_empty(document) or {}

    def _business_data(self, flat: Mapping[str, Any]) -> Dict[str, Any]:
        document = _pick(flat, _BUSINESS_TOP_KEYS)
        document['target_audience'] = _pick(flat, _AUDIENCE_KEYS)
        document.update(_pick(flat, _BUSINESS_TAIL_KEYS))
        mapped = set(_BUSINESS_TOP_KEYS) | set(_AUDIENCE_KEYS) | set(_BUSINESS_TAIL_KEYS)
        mapped.add('target_audience')
        self._carry_unmapped(document, flat, mapped)
        return prune_empty(document) or {}

    @staticmethod
    def _carry_unmapped(document: Dict[str, Any], flat: Mapping[str, Any], mapped) -> None:
        for key, value in flat.items():
            if key not in mapped and key not in document:
                document[key] = value
