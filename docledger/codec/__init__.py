"""
Envelope Codec

RESPONSIBILITY: Serialize / deserialize the envelope carried by each payload
ALLOWED INPUTS: Partial documents (encode), raw payloads (decode)
OUTPUTS: Envelope bytes, or Result[DecodedPayload] with explicit DECODE_ERROR

WIRE FORMAT:
============
{"type": "...", "timestamp": "...", "userId": "...",
 "chunkIndex": n, "totalChunks": m, "data": {...}}

chunkIndex / totalChunks are written only for chunked documents, ahead of
data so a payload cut inside data still names its chunk.
Payloads may arrive wrapped in base64 by an intermediate layer; decode
unwraps that first when the unwrapped text looks like JSON.

Decode never raises for malformed input. Failures are Error values
consumed by the classification layer.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union
import base64
import binascii
import json
import re

from ..contracts.base import DocumentType, Error, ErrorCode, Result, Timestamp
from ..contracts.events import Envelope
from ..domain.serialization import compact_json


_BASE64_ALPHABET = re.compile(r'^[A-Za-z0-9+/=]+$')
_BASE64_SEGMENT = re.compile(r'[A-Za-z0-9+/]+={0,2}')


@dataclass(frozen=True)
class DecodedPayload:
    """Successful decode: the unwrapped text and its envelope."""
    text: str
    envelope: Envelope


def _decode_error(message: str, code: ErrorCode = ErrorCode.DECODE_ERROR, **context: str) -> Error:
    return Error(
        code=code,
        message=message,
        timestamp=datetime.now(timezone.utc),
        context=tuple((k, str(v)) for k, v in sorted(context.items())),
    )


class EnvelopeCodec:
    """
    Stateless codec for the application envelope.

    The clock is injectable so writers can be replayed deterministically.
    """

    def __init__(
        self,
        base64_min_length: int = 20,
        clock: Optional[Callable[[], str]] = None,
    ):
        self._base64_min_length = base64_min_length
        self._clock = clock or (lambda: Timestamp.now().value.isoformat().replace('+00:00', 'Z'))

    # -------------------------------------------------------------------------
    # ENCODE
    # -------------------------------------------------------------------------

    def timestamp(self) -> str:
        """Envelope timestamp from the codec's clock."""
        return self._clock()

    def encode(
        self,
        doc_type: DocumentType,
        owner_id: str,
        partial: Mapping[str, Any],
        index: Optional[int] = None,
        total: Optional[int] = None,
        *,
        timestamp: Optional[str] = None,
    ) -> bytes:
        """
        Encode one (possibly partial) document into envelope bytes.

        index/total must be given together; a single-chunk write
        (total == 1) carries no chunk metadata.
        """
        if (index is None) != (total is None):
            raise ValueError("index and total must be given together")
        if total is not None and not 0 <= index < total:
            raise ValueError(f"chunk index {index} out of range for total {total}")

        envelope = {
            'type': doc_type.wire_name,
            'timestamp': timestamp or self._clock(),
            'userId': owner_id,
        }
        if total is not None and total > 1:
            envelope['chunkIndex'] = index
            envelope['totalChunks'] = total
        envelope['data'] = dict(partial)

        return compact_json(envelope).encode('utf-8')

    # -------------------------------------------------------------------------
    # DECODE
    # -------------------------------------------------------------------------

    def unwrap(self, raw: Union[str, bytes]) -> str:
        """
        Undo transport-level wrapping.

        Bytes are read as UTF-8. Text in the base64 alphabet and longer
        than the minimum length is decoded; the result is kept only if it
        starts with '{' or '['.
        """
        text = raw.decode('utf-8', errors='replace') if isinstance(raw, (bytes, bytearray)) else str(raw)
        stripped = text.strip()

        if len(stripped) <= self._base64_min_length or not _BASE64_ALPHABET.match(stripped):
            return text

        decoded = self._b64decode_segments(stripped)
        if decoded is None:
            return text
        try:
            decoded_text = decoded.decode('utf-8')
        except UnicodeDecodeError:
            return text
        if decoded_text.startswith('{') or decoded_text.startswith('['):
            return decoded_text
        return text

    def decode(self, raw: Union[str, bytes]) -> Result:
        """
        Decode a raw payload into an Envelope.

        Returns Result.success(DecodedPayload) or Result.failure(Error)
        with DECODE_ERROR (not JSON) or INVALID_ENVELOPE (JSON, wrong shape).
        """
        text = self.unwrap(raw)
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, ValueError) as e:
            return Result.failure(_decode_error(
                f"Payload is not valid JSON: {e}",
                preview=text[:80],
            ))

        result = self.envelope_from_mapping(parsed)
        if result.is_failure:
            return result
        return Result.success(DecodedPayload(text=text, envelope=result.value))

    def envelope_from_mapping(
        self,
        obj: Any,
        fallback_owner: Optional[str] = None,
        fallback_timestamp: Optional[str] = None,
    ) -> Result:
        """Validate a parsed JSON value into an Envelope."""
        if not isinstance(obj, Mapping):
            return Result.failure(_decode_error(
                "Envelope must be a JSON object",
                code=ErrorCode.INVALID_ENVELOPE,
            ))

        doc_type = DocumentType.from_wire(obj.get('type'))
        if doc_type is None:
            return Result.failure(_decode_error(
                f"Unknown document type: {obj.get('type')!r}",
                code=ErrorCode.INVALID_ENVELOPE,
            ))

        data = obj.get('data')
        if not isinstance(data, Mapping):
            return Result.failure(_decode_error(
                "Envelope data must be a JSON object",
                code=ErrorCode.INVALID_ENVELOPE,
                type=doc_type.value,
            ))

        chunk_index = obj.get('chunkIndex')
        total_chunks = obj.get('totalChunks')
        if chunk_index is not None or total_chunks is not None:
            if not _is_int(chunk_index) or not _is_int(total_chunks) \
                    or total_chunks < 1 or not 0 <= chunk_index < total_chunks:
                return Result.failure(_decode_error(
                    "Inconsistent chunk metadata",
                    code=ErrorCode.INVALID_ENVELOPE,
                    chunk_index=chunk_index,
                    total_chunks=total_chunks,
                ))

        owner = obj.get('userId', obj.get('ownerId'))
        timestamp = obj.get('timestamp')

        return Result.success(Envelope(
            type=doc_type,
            timestamp=timestamp if isinstance(timestamp, str) and timestamp else fallback_timestamp,
            owner_id=owner if isinstance(owner, str) and owner else fallback_owner,
            data=dict(data),
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            wire_type=obj.get('type'),
        ))

    @staticmethod
    def _b64decode_segments(text: str) -> Optional[bytes]:
        # Fragments encoded one by one concatenate into padded segments.
        segments = _BASE64_SEGMENT.findall(text)
        if ''.join(segments) != text:
            return None
        out = bytearray()
        for segment in segments:
            if len(segment) % 4:
                return None
            try:
                out.extend(base64.b64decode(segment, validate=True))
            except (binascii.Error, ValueError):
                return None
        return bytes(out)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
