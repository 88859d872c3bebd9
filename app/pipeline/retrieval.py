"""
File retrieval for reprocessing.

A document's bytes may live in the primary blob store, behind a public
secondary URL, or only in the secondary bucket. Sources are tried in
order; the first success wins and every attempt is recorded.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import structlog

from app.models.tables import AccountingDocument
from app.observability.metrics import retrieval_attempts_total
from app.storage.errors import StorageError
from app.storage.primary_store import PrimaryBlobStore
from app.storage.secondary_store import SecondaryStore

logger = structlog.get_logger(__name__)


@dataclass
class RetrievalAttempt:
    source: str
    identifier: Optional[str]
    succeeded: bool
    detail: str


@dataclass
class RetrievedFile:
    content: bytes
    content_type: str
    source: str
    attempts: list[RetrievalAttempt] = field(default_factory=list)


class RetrievalExhaustedError(Exception):
    """No source produced the file."""

    def __init__(self, document_id: str, attempts: list[RetrievalAttempt]):
        self.document_id = document_id
        self.attempts = attempts
        tried = "; ".join(
            f"{a.source} [{a.identifier or 'none'}]: {a.detail}" for a in attempts
        ) or "no sources configured"
        super().__init__(f"Could not retrieve file for document {document_id}. Tried {tried}")


@dataclass
class RetrievalSource:
    """
    name: label used in logs, metrics and error messages
    identify: pulls this source's identifier off the record (None = skip)
    fetch: loads (bytes, content_type) for that identifier
    """
    name: str
    identify: Callable[[AccountingDocument], Optional[str]]
    fetch: Callable[[str], Awaitable[tuple[bytes, str]]]


class RetrievalChain:
    """Ordered list of retrieval sources."""

    def __init__(self, sources: list[RetrievalSource]):
        self.sources = sources

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self.sources]

    async def retrieve(self, doc: AccountingDocument) -> RetrievedFile:
        """Raises RetrievalExhaustedError when every source fails."""
        attempts: list[RetrievalAttempt] = []
        document_id = str(doc.id)

        for source in self.sources:
            identifier = source.identify(doc)
            if not identifier:
                attempts.append(RetrievalAttempt(source.name, None, False,
                                                 "no identifier on record"))
                retrieval_attempts_total.labels(source=source.name, outcome="skipped").inc()
                continue

            try:
                content, content_type = await source.fetch(identifier)
            except StorageError as e:
                attempts.append(RetrievalAttempt(source.name, identifier, False, e.message))
                retrieval_attempts_total.labels(source=source.name, outcome="error").inc()
                logger.warning("retrieval_source_failed", document_id=document_id,
                               source=source.name, identifier=identifier, error=e.message)
                continue

            attempts.append(RetrievalAttempt(source.name, identifier, True,
                                             f"{len(content)} bytes"))
            retrieval_attempts_total.labels(source=source.name, outcome="success").inc()
            logger.info("retrieval_succeeded", document_id=document_id,
                        source=source.name, size_bytes=len(content))
            return RetrievedFile(content, content_type, source.name, attempts)

        logger.error("retrieval_exhausted", document_id=document_id,
                     sources=self.source_names)
        raise RetrievalExhaustedError(document_id, attempts)


def _public_url(doc: AccountingDocument) -> Optional[str]:
    if doc.secondary_url:
        return doc.secondary_url
    # Older records only carry the URL they were served from
    if doc.file_url and doc.file_url.startswith(("http://", "https://")):
        return doc.file_url
    return None


def build_default_chain(primary: PrimaryBlobStore, secondary: SecondaryStore) -> RetrievalChain:
    """primary handle, then secondary public URL, then secondary storage API."""

    async def fetch_primary(handle: str) -> tuple[bytes, str]:
        content, info = primary.get(handle)
        return content, info.content_type

    return RetrievalChain([
        RetrievalSource("primary", lambda doc: doc.primary_handle, fetch_primary),
        RetrievalSource("secondary_url", _public_url, secondary.fetch_public),
        RetrievalSource("secondary_api", lambda doc: doc.secondary_path, secondary.download),
    ])
