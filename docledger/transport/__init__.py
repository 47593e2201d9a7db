"""
Log Transport Layer

RESPONSIBILITY: Move payloads to and from the external append-only log
ALLOWED INPUTS: Topic ids, encoded payloads
OUTPUTS: LogEntry lists (read), transaction ids (write)

COMPONENTS:
===========
LogReader / LogWriter - interfaces the core depends on
InMemoryLog           - reference log that fragments oversized payloads
                        the way the real transport does
MirrorNodeReader      - REST reader for a Hedera mirror node (httpx)
DocumentWriter        - write path: chunk -> encode -> append
ReassemblyService     - read path: fetch once -> assemble

FAILURE POLICY:
===============
Transport failures are raised as TransportError and propagate to the
caller unchanged. Nothing here retries.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
import base64
import time

import httpx

from ..assembly import DocumentAssembler
from ..chunking import Chunker
from ..codec import EnvelopeCodec
from ..config import ReassemblyConfig
from ..contracts.base import DocumentType, TransportError
from ..contracts.events import (
    AssemblyResult,
    AuditEventType,
    LogEntry,
    TransportChunkInfo,
)
from ..observability import ObservabilityEngine


Payload = Union[str, bytes]


# =============================================================================
# INTERFACES
# =============================================================================

class LogReader(ABC):
    """Read side of the external log."""

    @abstractmethod
    def fetch(self, owner_topic: str, limit: int = 100, order: str = "desc") -> List[LogEntry]:
        """Return up to `limit` entries of the topic. Raises TransportError."""


class LogWriter(ABC):
    """Write side of the external log."""

    @abstractmethod
    def append(self, owner_topic: str, payload: Payload) -> str:
        """Append one payload, returning its transaction id. Raises TransportError."""


# =============================================================================
# IN-MEMORY LOG
# =============================================================================

class InMemoryLog(LogReader, LogWriter):
    """
    Reference log.

    Consensus timestamps come from a monotonic counter so runs are
    repeatable. Payloads above max_message_bytes are split into
    TransportChunkInfo-tagged entries sharing one group key; with
    base64_payloads each stored payload is base64 text, as the mirror
    REST API returns it.
    """

    def __init__(
        self,
        max_message_bytes: int = 1024,
        base64_payloads: bool = False,
        payer_id: str = "0.0.1001",
        start_seconds: int = 1700000000,
    ):
        if max_message_bytes < 1:
            raise ValueError("max_message_bytes must be positive")
        self._max_message_bytes = max_message_bytes
        self._base64_payloads = base64_payloads
        self._payer_id = payer_id
        self._clock_seconds = start_seconds
        self._topics: Dict[str, List[LogEntry]] = {}

    @staticmethod
    def from_config(config: ReassemblyConfig, base64_payloads: bool = False) -> InMemoryLog:
        return InMemoryLog(
            max_message_bytes=config.transport_max_message_bytes,
            base64_payloads=base64_payloads,
        )

    def append(self, owner_topic: str, payload: Payload) -> str:
        raw = payload.encode('utf-8') if isinstance(payload, str) else bytes(payload)
        valid_start = self._tick()
        transaction_id = f"{self._payer_id}@{valid_start}"

        parts = [
            raw[i:i + self._max_message_bytes]
            for i in range(0, len(raw), self._max_message_bytes)
        ] or [b'']
        total = len(parts)

        for index, part in enumerate(parts):
            info = None
            if total > 1:
                info = TransportChunkInfo(index=index, total=total, group_key=transaction_id)
            self._store(owner_topic, part, info)

        return transaction_id

    def fetch(self, owner_topic: str, limit: int = 100, order: str = "desc") -> List[LogEntry]:
        entries = sorted(
            self._topics.get(owner_topic, []),
            key=lambda e: e.order_key,
            reverse=(order == "desc"),
        )
        return entries[:limit]

    def inject(self, owner_topic: str, payload: Payload,
               transport_chunk_info: Optional[TransportChunkInfo] = None) -> LogEntry:
        """Store a payload as-is, bypassing fragmentation."""
        raw = payload.encode('utf-8') if isinstance(payload, str) else bytes(payload)
        return self._store(owner_topic, raw, transport_chunk_info)

    def entries(self, owner_topic: str) -> Tuple[LogEntry, ...]:
        return tuple(self._topics.get(owner_topic, []))

    def _store(self, owner_topic: str, raw: bytes,
               info: Optional[TransportChunkInfo]) -> LogEntry:
        topic = self._topics.setdefault(owner_topic, [])
        payload: Payload = base64.b64encode(raw).decode('ascii') if self._base64_payloads else raw
        entry = LogEntry(
            sequence_number=len(topic) + 1,
            consensus_timestamp=self._tick(),
            payer_id=self._payer_id,
            payload=payload,
            transport_chunk_info=info,
            topic_id=owner_topic,
        )
        topic.append(entry)
        return entry

    def _tick(self) -> str:
        self._clock_seconds += 1
        return f"{self._clock_seconds}.000000000"


# =============================================================================
# MIRROR NODE READER
# =============================================================================

class MirrorNodeReader(LogReader):
    """
    Reads topic messages from a mirror node REST API.

    The `message` field is returned untouched (base64 text); unwrapping is
    the codec's job. chunk_info.number is 1-based on the wire.
    """

    def __init__(
        self,
        base_url: str = "https://testnet.mirrornode.hedera.com",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
        user_agent: str = "docledger/1.0",
    ):
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._transport = transport
        self._user_agent = user_agent

    @staticmethod
    def from_config(config: ReassemblyConfig) -> MirrorNodeReader:
        return MirrorNodeReader(
            base_url=config.mirror_node_url,
            timeout=config.http_timeout_seconds,
        )

    def fetch(self, owner_topic: str, limit: int = 100, order: str = "desc") -> List[LogEntry]:
        url = f"{self._base_url}/api/v1/topics/{owner_topic}/messages"

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(
                    url,
                    params={'limit': limit, 'order': order},
                    headers={'User-Agent': self._user_agent},
                    follow_redirects=True,
                )
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            raise TransportError.create(f"Mirror node timed out: {e}", topic=owner_topic)
        except httpx.HTTPStatusError as e:
            raise TransportError.create(
                f"Mirror node returned HTTP {e.response.status_code}",
                topic=owner_topic,
                status=e.response.status_code,
            )
        except httpx.HTTPError as e:
            raise TransportError.create(f"Mirror node request failed: {e}", topic=owner_topic)
        except ValueError as e:
            raise TransportError.create(f"Mirror node returned invalid JSON: {e}", topic=owner_topic)

        messages = body.get('messages') if isinstance(body, Mapping) else None
        if not isinstance(messages, list):
            raise TransportError.create("Mirror node response has no messages list", topic=owner_topic)

        entries = []
        for message in messages:
            if not isinstance(message, Mapping):
                continue
            try:
                entries.append(self._to_entry(owner_topic, message))
            except (TypeError, ValueError) as e:
                raise TransportError.create(
                    f"Mirror node returned a malformed message: {e}",
                    topic=owner_topic,
                    sequence_number=message.get('sequence_number'),
                )
        return entries

    @staticmethod
    def _to_entry(owner_topic: str, message: Mapping[str, Any]) -> LogEntry:
        return LogEntry(
            sequence_number=int(message.get('sequence_number', 0)),
            consensus_timestamp=str(message.get('consensus_timestamp', '')),
            payer_id=str(message.get('payer_account_id', '')),
            payload=message.get('message') or '',
            transport_chunk_info=_chunk_info(message.get('chunk_info')),
            topic_id=message.get('topic_id') or owner_topic,
            running_hash=message.get('running_hash'),
        )


def _chunk_info(raw: Any) -> Optional[TransportChunkInfo]:
    if not isinstance(raw, Mapping):
        return None
    number, total = raw.get('number'), raw.get('total')
    if not isinstance(number, int) or not isinstance(total, int):
        return None
    initial = raw.get('initial_transaction_id')
    if isinstance(initial, Mapping):
        group_key = f"{initial.get('account_id')}@{initial.get('transaction_valid_start')}"
    else:
        group_key = str(initial)
    return TransportChunkInfo(index=number - 1, total=total, group_key=group_key)


# =============================================================================
# WRITE PATH
# =============================================================================

class DocumentWriter:
    """
    Chunk, encode and append one document.

    All chunks of one write share a single envelope timestamp; that is
    what ties them together on the read path.
    """

    def __init__(
        self,
        writer: LogWriter,
        config: Optional[ReassemblyConfig] = None,
        codec: Optional[EnvelopeCodec] = None,
        observability: Optional[ObservabilityEngine] = None,
    ):
        self._writer = writer
        self._config = config or ReassemblyConfig()
        self._codec = codec or EnvelopeCodec(base64_min_length=self._config.base64_min_length)
        self._chunker = Chunker()
        self._observability = observability

    def write(
        self,
        owner_topic: str,
        owner_id: str,
        doc_type: DocumentType,
        document: Mapping[str, Any],
        timestamp: Optional[str] = None,
    ) -> Tuple[str, ...]:
        stamp = timestamp or self._codec.timestamp()
        chunks = self._chunker.split(document, self._config.max_chunk_bytes)
        total = len(chunks)

        transaction_ids = []
        for index, chunk in enumerate(chunks):
            payload = self._codec.encode(
                doc_type, owner_id, chunk,
                index=index if total > 1 else None,
                total=total if total > 1 else None,
                timestamp=stamp,
            )
            transaction_ids.append(self._append(owner_topic, payload))

        if self._observability:
            self._observability.collect_metric(
                "chunks_written_total", total, {"type": doc_type.value}
            )
            self._observability.log_audit(
                action="write_document",
                entity_id=owner_id,
                details=f"type={doc_type.value} chunks={total}",
                layer="transport",
                event_type=AuditEventType.TRANSPORT,
                entity_type=doc_type.value,
            )
        return tuple(transaction_ids)

    def _append(self, owner_topic: str, payload: bytes) -> str:
        try:
            return self._writer.append(owner_topic, payload)
        except TransportError as e:
            if self._observability:
                self._observability.log_audit(
                    action="append",
                    entity_id=owner_topic,
                    outcome="failure",
                    details=e.error.message,
                    layer="transport",
                    event_type=AuditEventType.ERROR,
                )
            raise


# =============================================================================
# READ PATH
# =============================================================================

class ReassemblyService:
    """
    Fetch an owner's topic once and assemble it.

    TransportError from the reader propagates unchanged.
    """

    def __init__(
        self,
        reader: LogReader,
        config: Optional[ReassemblyConfig] = None,
        assembler: Optional[DocumentAssembler] = None,
        observability: Optional[ObservabilityEngine] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._reader = reader
        self._config = config or ReassemblyConfig()
        self._observability = observability
        self._assembler = assembler or DocumentAssembler(
            self._config, observability=observability
        )
        self._clock = clock

    def load(self, owner_id: str, owner_topic: str) -> AssemblyResult:
        start_time = self._clock()
        try:
            entries = self._reader.fetch(
                owner_topic,
                limit=self._config.fetch_limit,
                order=self._config.fetch_order,
            )
        except TransportError as e:
            if self._observability:
                self._observability.log_audit(
                    action="fetch",
                    entity_id=owner_topic,
                    outcome="failure",
                    details=e.error.message,
                    layer="transport",
                    event_type=AuditEventType.ERROR,
                )
            raise

        if self._observability:
            self._observability.collect_metric(
                "fetch_duration_ms", (self._clock() - start_time) * 1000
            )
            self._observability.log_audit(
                action="fetch",
                entity_id=owner_topic,
                details=f"entries={len(entries)}",
                layer="transport",
                event_type=AuditEventType.TRANSPORT,
            )

        return self._assembler.assemble(owner_id, entries)
