"""
Chunking Layer

RESPONSIBILITY: Split an in-memory document into size-bounded fragments
ALLOWED INPUTS: A JSON-compatible mapping and a byte budget
OUTPUTS: Ordered list of partial documents (write order = chunk index)

WHAT THIS LAYER MUST NOT DO:
============================
- Encode envelopes or talk to the log
- Reorder keys across chunks
- Drop data: merging the chunks back yields the original document
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, List, Mapping
import math

from ..domain.serialization import compact_json, serialized_size


class Chunker:
    """
    Greedy key-packing splitter.

    Size is the UTF-8 length of the compact JSON form. A key whose value
    alone overflows the budget is split into its own keys and re-wrapped
    under the parent key; values that cannot be split are emitted as a
    single oversized chunk.
    """

    def split(self, document: Mapping[str, Any], max_bytes: int) -> List[Dict[str, Any]]:
        if max_bytes < 1:
            raise ValueError("max_bytes must be positive")
        if not isinstance(document, Mapping):
            raise TypeError("document must be a mapping")

        if serialized_size(document) <= max_bytes:
            return [dict(document)]

        return list(self._split_mapping(document, max_bytes))

    def _split_mapping(self, obj: Mapping[str, Any], max_bytes: int) -> Iterator[Dict[str, Any]]:
        keys = list(obj.keys())
        estimated_chunks = max(1, math.ceil(serialized_size(obj) / max_bytes))
        keys_per_chunk = max(1, math.ceil(len(keys) / estimated_chunks))

        current: Dict[str, Any] = {}
        for key in keys:
            value = obj[key]
            single = {key: value}

            if serialized_size(single) > max_bytes:
                if current:
                    yield current
                    current = {}
                yield from self._split_oversized(key, value, max_bytes)
                continue

            if current:
                candidate = dict(current)
                candidate[key] = value
                if len(current) >= keys_per_chunk or serialized_size(candidate) > max_bytes:
                    yield current
                    current = {key: value}
                else:
                    current = candidate
            else:
                current = single

        if current:
            yield current

    def _split_oversized(self, key: str, value: Any, max_bytes: int) -> Iterator[Dict[str, Any]]:
        if not isinstance(value, Mapping) or len(value) < 2:
            yield {key: value}
            return

        # {"<key>":<sub>} costs the quoted key, colon and braces
        wrapper = len(compact_json(key).encode("utf-8")) + 3
        inner_budget = max(1, max_bytes - wrapper)
        for sub_chunk in self._split_mapping(value, inner_budget):
            yield {key: sub_chunk}


def split_document(document: Mapping[str, Any], max_bytes: int) -> List[Dict[str, Any]]:
    """Module-level convenience wrapper around Chunker.split."""
    return Chunker().split(document, max_bytes)
