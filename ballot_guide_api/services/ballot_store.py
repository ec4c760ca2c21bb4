"""Durable key/value storage of ballot documents with content fingerprints."""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ballot_guide_api.models import BallotDocument, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

STATEWIDE_SCOPE = "statewide"


def guide_scope(guide_key: str) -> str:
    """Scope under which a personalized guide is persisted."""
    return f"guide:{guide_key}"


def fingerprint_payload(payload: str) -> str:
    """SHA-256 hex digest of a serialized document."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def parse_etag(header: str | None) -> str | None:
    """Fingerprint named by an ETag or If-None-Match value.

    Takes the first entity tag and strips quotes and any weak prefix.
    """
    if not header:
        return None
    first = header.split(",")[0].strip()
    if first.startswith("W/"):
        first = first[2:]
    return first.strip('"') or None


def serialize_document(document: BaseModel) -> str:
    """Canonical JSON: wire names, sorted keys, no whitespace."""
    return json.dumps(
        document.model_dump(mode="json", by_alias=True),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


@dataclass(frozen=True)
class StoredDocument(Generic[T]):
    """A document read back from the store with its fingerprint."""

    document: T
    fingerprint: str
    updated_at: datetime | None = None


class FetchStatus(str, Enum):
    OK = "ok"
    NOT_MODIFIED = "not_modified"
    MISSING = "missing"


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of a conditional fetch."""

    status: FetchStatus
    document: T | None = None
    fingerprint: str | None = None


class BallotStore:
    """Whole-document storage keyed by (party, scope).

    Each call opens its own session so the store can be used from worker
    threads and from runs that outlive the request that started them.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, party: str, scope: str, model: type[T]) -> StoredDocument[T] | None:
        """Read a document.

        Returns:
            The parsed document and its fingerprint, or None when nothing is
            stored under (party, scope) yet

        Raises:
            pydantic.ValidationError: the stored payload does not match ``model``
        """
        with self._session_factory() as session:
            row = session.get(BallotDocument, (party, scope))
            if row is None:
                return None
            payload, fingerprint, updated_at = row.payload, row.fingerprint, row.updated_at

        return StoredDocument(
            document=model.model_validate_json(payload),
            fingerprint=fingerprint,
            updated_at=updated_at,
        )

    def get_fingerprint(self, party: str, scope: str) -> str | None:
        """Current fingerprint without loading the payload."""
        with self._session_factory() as session:
            return session.execute(
                select(BallotDocument.fingerprint).where(
                    BallotDocument.party == party, BallotDocument.scope == scope
                )
            ).scalar_one_or_none()

    def put(self, party: str, scope: str, document: BaseModel) -> str:
        """Replace the document under (party, scope) and return its new fingerprint."""
        payload = serialize_document(document)
        fingerprint = fingerprint_payload(payload)

        with self._session_factory() as session:
            row = session.get(BallotDocument, (party, scope))
            if row is None:
                row = BallotDocument(party=party, scope=scope)
                session.add(row)
            row.payload = payload
            row.fingerprint = fingerprint
            row.updated_at = utcnow()
            session.commit()

        logger.debug("Stored ballot document %s/%s (%s)", party, scope, fingerprint[:12])
        return fingerprint

    def fetch(
        self, party: str, scope: str, model: type[T], known_fingerprint: str | None = None
    ) -> FetchResult[T]:
        """Conditional read.

        A caller presenting the current fingerprint gets NOT_MODIFIED and no
        payload. A missing document is MISSING, which is not an error.
        """
        if known_fingerprint is not None:
            current = self.get_fingerprint(party, scope)
            if current is None:
                return FetchResult(status=FetchStatus.MISSING)
            if current == known_fingerprint:
                return FetchResult(status=FetchStatus.NOT_MODIFIED, fingerprint=current)

        stored = self.get(party, scope, model)
        if stored is None:
            return FetchResult(status=FetchStatus.MISSING)
        return FetchResult(
            status=FetchStatus.OK, document=stored.document, fingerprint=stored.fingerprint
        )
