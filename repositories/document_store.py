"""
Document store (persistence primitive).

The commerce pipeline talks to its database as a versioned key/value +
query store. Every document lives in a collection, has a string id, a JSON
payload and a version number maintained by the store (1 on create, +1 on every
write).

Reads: get / query. Writes: create / set / update / delete, each either alone
or combined in an atomic batch via commit(). Every write may carry an
expected_version; if the stored version differs the whole batch is rejected
with StoreConflict and nothing is applied. expected_version=0 means "must not
exist yet".

The Supabase implementation keeps all collections in a single `documents`
table and applies writes through the `commit_documents` Postgres function
(see sql/commerce_schema.sql), which runs the batch in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from postgrest.exceptions import APIError

from domain.errors import MalformedDocument, StoreConflict, StoreUnavailable
from domain.time import parse_utc_datetime

logger = logging.getLogger(__name__)

# Supabase table holding every collection.
_DOCUMENTS_TABLE: str = "documents"
_COMMIT_FUNCTION: str = "commit_documents"


class WriteOp(str, Enum):
    CREATE = "create"  # fails if the document exists
    SET = "set"  # replace payload, create if missing
    UPDATE = "update"  # shallow-merge top-level fields, document must exist
    DELETE = "delete"  # no-op if missing unless expected_version is given


@dataclass(frozen=True, slots=True)
class Document:
    collection: str
    doc_id: str
    data: Mapping[str, Any]
    version: int
    updated_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Write:
    op: WriteOp
    collection: str
    doc_id: str
    data: Mapping[str, Any] = field(default_factory=dict)
    expected_version: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "op": self.op.value,
            "collection": self.collection,
            "id": self.doc_id,
            "data": dict(self.data),
            "expected_version": self.expected_version,
        }


def create(collection: str, doc_id: str, data: Mapping[str, Any]) -> Write:
    return Write(WriteOp.CREATE, collection, doc_id, data)


def set_(
    collection: str,
    doc_id: str,
    data: Mapping[str, Any],
    expected_version: Optional[int] = None,
) -> Write:
    return Write(WriteOp.SET, collection, doc_id, data, expected_version)


def update(
    collection: str,
    doc_id: str,
    fields: Mapping[str, Any],
    expected_version: Optional[int] = None,
) -> Write:
    return Write(WriteOp.UPDATE, collection, doc_id, fields, expected_version)


def delete(collection: str, doc_id: str, expected_version: Optional[int] = None) -> Write:
    return Write(WriteOp.DELETE, collection, doc_id, {}, expected_version)


@dataclass(frozen=True, slots=True)
class Filter:
    """Equality ("==") or membership ("in") filter on a top-level payload field."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in ("==", "in"):
            raise ValueError(f"Unsupported filter operator: {self.op!r}")


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    async def commit(self, writes: Sequence[Write]) -> None:
        ...


def row_to_document(row: Mapping[str, Any]) -> Document:
    """Convert a `documents` row into a Document, rejecting malformed rows."""

    try:
        data = row["data"]
        if not isinstance(data, Mapping):
            raise TypeError(f"data must be an object, got {type(data).__name__}")
        return Document(
            collection=str(row["collection"]),
            doc_id=str(row["id"]),
            data=dict(data),
            version=int(row["version"]),
            updated_at=parse_utc_datetime(row["updated_at_utc"]) if row.get("updated_at_utc") else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(
            str(row.get("collection", "?")), str(row.get("id", "?")), str(e)
        ) from e


class SupabaseDocumentStore:
    """DocumentStore backed by the Supabase async client."""

    def __init__(self, client: Any) -> None:
        self._client = client

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        response = await self._execute(
            self._client.table(_DOCUMENTS_TABLE)
            .select("*")
            .eq("collection", collection)
            .eq("id", doc_id)
            .limit(1),
            f"get {collection}/{doc_id}",
        )
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return row_to_document(rows[0])

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        request = self._client.table(_DOCUMENTS_TABLE).select("*").eq("collection", collection)

        for f in filters:
            column = f"data->>{f.field}"
            if f.op == "==":
                request = request.eq(column, _as_text(f.value))
            else:
                request = request.in_(column, [_as_text(v) for v in f.value])

        if order_by is not None:
            request = request.order(f"data->>{order_by}", desc=descending)
        if limit is not None:
            request = request.limit(limit)

        response = await self._execute(request, f"query {collection}")
        rows = getattr(response, "data", None) or []
        return [row_to_document(row) for row in rows]

    async def commit(self, writes: Sequence[Write]) -> None:
        """
        Apply writes atomically via the commit_documents Postgres function.

        Raises:
            StoreConflict: a version precondition failed (nothing was applied)
            StoreUnavailable: transport or database failure
        """
        if not writes:
            return

        payload = [w.to_payload() for w in writes]
        try:
            response = await self._client.rpc(_COMMIT_FUNCTION, {"p_writes": payload}).execute()
            result = getattr(response, "data", None)
        except APIError as e:
            # PostgREST reports a json-returning function's result through
            # APIError for some responses, including successful ones.
            try:
                result = e.json() if callable(getattr(e, "json", None)) else {}
            except ValueError:
                result = {}
            if not isinstance(result, Mapping) or "success" not in result:
                raise StoreUnavailable(f"Document commit failed: {e}") from e
        except Exception as e:
            raise StoreUnavailable(f"Document commit failed: {e}") from e

        if not isinstance(result, Mapping):
            raise StoreUnavailable(f"Unexpected commit response: {result!r}")

        if result.get("success"):
            return

        error = result.get("error") or "UNKNOWN"
        message = result.get("message") or error
        if error in ("VERSION_CONFLICT", "ALREADY_EXISTS", "MISSING"):
            logger.info("Commit rejected (%s): %s", error, message)
            raise StoreConflict(message)
        raise StoreUnavailable(f"Document commit failed ({error}): {message}")

    async def _execute(self, request: Any, what: str) -> Any:
        try:
            response = await request.execute()
        except Exception as e:
            raise StoreUnavailable(f"Failed to {what}: {e}") from e
        error = getattr(response, "error", None)
        if error:
            raise StoreUnavailable(f"Failed to {what}: {error}")
        return response


def _as_text(value: Any) -> str:
    # ->> yields text, so compare against the text form
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "Document",
    "DocumentStore",
    "Filter",
    "SupabaseDocumentStore",
    "Write",
    "WriteOp",
    "create",
    "delete",
    "row_to_document",
    "set_",
    "update",
]
