from types import SimpleNamespace

import pytest

from campal.exceptions import DataAccessException
from campal.repositories import InMemoryRepository, RepositoryFactory, SupabaseRepository


class FakeQuery:
    """Records the PostgREST builder calls made by SupabaseRepository"""

    def __init__(self, calls, data):
        self.calls = calls
        self.data = data

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def execute(self):
        self.calls.append(("execute", (), {}))
        return SimpleNamespace(data=self.data)


class FakeClient:
    def __init__(self, data=None):
        self.calls = []
        self.data = data if data is not None else []

    def table(self, name):
        self.calls.append(("table", (name,), {}))
        return FakeQuery(self.calls, self.data)


class BrokenClient:
    def table(self, name):
        raise RuntimeError("connection refused")


def test_memory_insert_generates_columns():
    repo = InMemoryRepository("districts")
    row = repo.insert([{"name": "IPITINGA"}])[0]

    assert row["id"]
    assert row["created_at"]
    assert repo.find_one("name", "IPITINGA")["id"] == row["id"]


def test_memory_select_filters_and_orders():
    repo = InMemoryRepository("churches", [
        {"id": "1", "name": "B", "district_id": "d1"},
        {"id": "2", "name": "A", "district_id": "d1"},
        {"id": "3", "name": "C", "district_id": "d2"},
    ])

    assert [r["name"] for r in repo.select({"district_id": "d1"}, order_by="name")] == ["A", "B"]
    assert [r["name"] for r in repo.select(order_by="name", descending=True)] == ["C", "B", "A"]
    assert repo.find_one("name", "Z") is None


def test_memory_update_touches_only_matching_rows():
    repo = InMemoryRepository("registrations", [
        {"id": "r1", "payment_status": "pending"},
        {"id": "r2", "payment_status": "pending"},
    ])

    updated = repo.update("id", "r1", {"payment_status": "paid"})

    assert len(updated) == 1
    assert repo.find_one("id", "r1")["payment_status"] == "paid"
    assert repo.find_one("id", "r2")["payment_status"] == "pending"


def test_memory_rows_are_copies():
    repo = InMemoryRepository("districts", [{"id": "d1", "name": "IPITINGA"}])
    repo.select()[0]["name"] = "changed"
    assert repo.find_one("id", "d1")["name"] == "IPITINGA"


def test_supabase_select_builds_query():
    client = FakeClient(data=[{"id": "d1", "name": "IPITINGA"}])
    repo = SupabaseRepository(client, "districts")

    rows = repo.select({"name": "IPITINGA"}, order_by="name", descending=True)

    assert rows == [{"id": "d1", "name": "IPITINGA"}]
    names = [call[0] for call in client.calls]
    assert names == ["table", "select", "eq", "order", "execute"]
    assert client.calls[2][1] == ("name", "IPITINGA")
    assert client.calls[3][2] == {"desc": True}


def test_supabase_update_filters_by_match_field():
    client = FakeClient(data=[{"id": "r1"}])
    repo = SupabaseRepository(client, "registrations")

    repo.update("id", "r1", {"payment_status": "paid"})

    assert ("update", ({"payment_status": "paid"},), {}) in client.calls
    assert ("eq", ("id", "r1"), {}) in client.calls


def test_supabase_errors_become_data_access_exceptions():
    repo = SupabaseRepository(BrokenClient(), "registrations")

    with pytest.raises(DataAccessException) as excinfo:
        repo.insert([{"full_name": "Ana"}])
    assert excinfo.value.operation == "insert"


def test_factory_rejects_unknown_type():
    with pytest.raises(ValueError):
        RepositoryFactory.create_repository("sqlite", "districts")


def test_factory_requires_client_for_supabase():
    with pytest.raises(ValueError):
        RepositoryFactory.create_repository("supabase", "districts")


def test_factory_requires_supabase_credentials():
    with pytest.raises(ValueError):
        RepositoryFactory.create_supabase_client("", "")
