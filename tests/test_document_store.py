"""
Tests for `repositories/document_store.py` and `repositories/client.py`.

The Supabase client is replaced by a minimal object returning canned RPC
responses; the commit_documents function itself lives in
sql/commerce_schema.sql.
"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from domain.errors import MalformedDocument, StoreConflict, StoreUnavailable
from repositories import document_store as ds
from repositories.client import load_settings
from repositories.document_store import Filter, SupabaseDocumentStore, row_to_document


class _Rpc:
    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    async def execute(self):
        if self._error is not None:
            raise self._error
        return SimpleNamespace(data=self._result)


class _RpcClient:
    def __init__(self, result=None, error=None):
        self.calls = []
        self._rpc = _Rpc(result, error)

    def rpc(self, name, params):
        self.calls.append((name, params))
        return self._rpc


async def test_commit_sends_batch_payload() -> None:
    client = _RpcClient({"success": True})
    store = SupabaseDocumentStore(client)

    await store.commit([
        ds.create("orders", "ord_1", {"status": "pending"}),
        ds.delete("cart_items", "u1:P", expected_version=3),
    ])

    (name, params), = client.calls
    assert name == "commit_documents"
    assert params["p_writes"] == [
        {"op": "create", "collection": "orders", "id": "ord_1", "data": {"status": "pending"}, "expected_version": None},
        {"op": "delete", "collection": "cart_items", "id": "u1:P", "data": {}, "expected_version": 3},
    ]


async def test_empty_commit_is_a_no_op() -> None:
    client = _RpcClient({"success": True})

    await SupabaseDocumentStore(client).commit([])

    assert client.calls == []


@pytest.mark.parametrize("error", ["VERSION_CONFLICT", "ALREADY_EXISTS", "MISSING"])
async def test_precondition_failures_are_conflicts(error) -> None:
    store = SupabaseDocumentStore(_RpcClient({"success": False, "error": error, "message": "orders/ord_1"}))

    with pytest.raises(StoreConflict):
        await store.commit([ds.update("orders", "ord_1", {"status": "shipped"}, expected_version=2)])


async def test_database_errors_are_unavailable() -> None:
    failing = SupabaseDocumentStore(_RpcClient({"success": False, "error": "INVALID_OP", "message": "bad op"}))
    broken = SupabaseDocumentStore(_RpcClient(error=ConnectionError("connection reset")))

    with pytest.raises(StoreUnavailable):
        await failing.commit([ds.set_("wallets", "u1", {"balance": "1.00"})])
    with pytest.raises(StoreUnavailable) as exc:
        await broken.commit([ds.set_("wallets", "u1", {"balance": "1.00"})])
    assert exc.value.retryable is True


SCHEMA = Path(__file__).parent.parent / "sql" / "commerce_schema.sql"


def test_create_race_is_reported_as_already_exists() -> None:
    sql = SCHEMA.read_text()
    handlers = sql[sql.index("exception\n    when"):]

    unique = handlers[handlers.index("when unique_violation then"):]
    assert "'ALREADY_EXISTS'" in unique[:unique.index(");")]


def test_set_of_new_document_does_not_upsert() -> None:
    sql = SCHEMA.read_text()
    guarded = sql[sql.index("elsif v_op = 'set' and v_expected = 0 then"):sql.index("elsif v_op = 'set' then")]

    assert "insert into documents" in guarded
    assert "on conflict" not in guarded


async def test_lost_create_race_is_a_conflict() -> None:
    store = SupabaseDocumentStore(_RpcClient({
        "success": False,
        "error": "ALREADY_EXISTS",
        "message": 'duplicate key value violates unique constraint "documents_pkey"',
    }))

    with pytest.raises(StoreConflict):
        await store.commit([ds.create("cart_items", "u1_P", {"user_id": "u1", "quantity": 1})])


def test_row_to_document() -> None:
    doc = row_to_document({
        "collection": "wallets",
        "id": "u1",
        "data": {"balance": "10.00"},
        "version": 4,
        "updated_at_utc": "2024-01-08T09:00:00Z",
    })

    assert doc.version == 4
    assert doc.data == {"balance": "10.00"}
    assert doc.updated_at.isoformat() == "2024-01-08T09:00:00+00:00"


def test_malformed_row_is_rejected() -> None:
    with pytest.raises(MalformedDocument):
        row_to_document({"collection": "wallets", "id": "u1", "data": "oops", "version": 1})
    with pytest.raises(MalformedDocument):
        row_to_document({"collection": "wallets", "id": "u1", "data": {}})


def test_filter_rejects_unknown_operator() -> None:
    with pytest.raises(ValueError):
        Filter("status", ">=", "pending")


def test_load_settings_defaults() -> None:
    settings = load_settings({"SUPABASE_URL": "https://db.test", "SUPABASE_KEY": "key"})

    assert settings.payment_timeout_seconds == 15.0
    assert settings.wallet_max_retries == 5
    assert settings.checkout_lock_ttl_seconds == 60
    assert settings.gcash_gateway_url is None
    assert settings.log_level == "INFO"


def test_load_settings_requires_supabase() -> None:
    with pytest.raises(RuntimeError, match="SUPABASE_KEY"):
        load_settings({"SUPABASE_URL": "https://db.test"})
