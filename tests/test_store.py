from __future__ import annotations

import asyncio
import json

import pytest

from bills_agent.services.store import (
    Bill,
    BillNotFoundError,
    BillStore,
    DuplicateBillError,
    StoreCorruptError,
)


def _loaded(path) -> BillStore:
    store = BillStore(path)
    asyncio.run(store.load())
    return store


def _mutate(store: BillStore, fn):
    async def run():
        async with store.mutation():
            return fn()

    return asyncio.run(run())


def test_load_seeds_missing_file(store_path):
    store = _loaded(store_path)

    assert store.bills == []
    assert store.payments == {}
    assert store.push_tokens == []
    assert json.loads(store_path.read_text()) == {"bills": [], "payments": {}, "pushTokens": []}


def test_load_refuses_corrupt_file(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_text("{not json")

    with pytest.raises(StoreCorruptError):
        _loaded(store_path)


def test_load_refuses_invalid_layout(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_text(json.dumps({"bills": [{"name": "no id"}]}))

    with pytest.raises(StoreCorruptError):
        _loaded(store_path)


def test_mutations_are_written_to_disk(store_path):
    store = _loaded(store_path)
    _mutate(store, lambda: store.add_bill(Bill(id="rent", name="Rent", due_day=1, amount=1200)))
    _mutate(store, lambda: store.set_paid("rent", "2024-05", True))
    _mutate(store, lambda: store.add_token("ExponentPushToken[abc]", "ios"))

    reloaded = _loaded(store_path)

    assert [bill.to_dict() for bill in reloaded.bills] == [
        {"id": "rent", "name": "Rent", "dueDay": 1, "amount": 1200, "notes": ""}
    ]
    assert reloaded.payments == {"2024-05": {"rent"}}
    assert json.loads(store_path.read_text())["payments"] == {"2024-05": {"rent": True}}
    assert reloaded.push_tokens[0].platform == "ios"


def test_duplicate_bill_leaves_store_unchanged(store_path):
    store = _loaded(store_path)
    _mutate(store, lambda: store.add_bill(Bill(id="rent", name="Rent", due_day=1, amount=1200)))
    before = store_path.read_text()

    with pytest.raises(DuplicateBillError):
        _mutate(store, lambda: store.add_bill(Bill(id="rent", name="Other", due_day=2)))

    assert [bill.name for bill in store.bills] == ["Rent"]
    assert store_path.read_text() == before


def test_update_changes_only_supplied_fields(store_path):
    store = _loaded(store_path)
    _mutate(store, lambda: store.add_bill(Bill(id="gym", name="Gym", due_day=15, amount=40, notes="monthly")))

    bill = _mutate(store, lambda: store.update_bill("gym", {"amount": 45.5}))

    assert bill.to_dict() == {"id": "gym", "name": "Gym", "dueDay": 15, "amount": 45.5, "notes": "monthly"}


def test_remove_bill_cascades_payment_marks(store_path):
    store = _loaded(store_path)
    _mutate(store, lambda: store.add_bill(Bill(id="rent", name="Rent", due_day=1)))
    _mutate(store, lambda: store.add_bill(Bill(id="power", name="Power", due_day=20)))
    for month in ("2024-04", "2024-05", "2024-06"):
        _mutate(store, lambda month=month: store.set_paid("rent", month, True))
    _mutate(store, lambda: store.set_paid("power", "2024-05", True))

    _mutate(store, lambda: store.remove_bill("rent"))

    assert all("rent" not in paid for paid in store.payments.values())
    assert store.payments == {"2024-05": {"power"}}
    assert "rent" not in store_path.read_text()


def test_unknown_bill_operations_raise(store_path):
    store = _loaded(store_path)

    with pytest.raises(BillNotFoundError):
        store.update_bill("missing", {"name": "x"})
    with pytest.raises(BillNotFoundError):
        store.remove_bill("missing")
    with pytest.raises(BillNotFoundError):
        store.set_paid("missing", "2024-05", True)


def test_unmarking_prunes_empty_month(store_path):
    store = _loaded(store_path)
    _mutate(store, lambda: store.add_bill(Bill(id="rent", name="Rent", due_day=1)))
    _mutate(store, lambda: store.set_paid("rent", "2024-05", True))

    assert _mutate(store, lambda: store.set_paid("rent", "2024-05", False)) is False
    assert store.payments == {}


def test_token_registration_is_idempotent(store_path):
    store = _loaded(store_path)

    assert store.add_token("ExponentPushToken[abc]") is True
    assert store.add_token("ExponentPushToken[abc]", "android") is False
    assert len(store.push_tokens) == 1
    assert store.push_tokens[0].platform == "unknown"

    assert store.remove_token("ExponentPushToken[abc]") is True
    assert store.remove_token("ExponentPushToken[abc]") is False
    assert store.push_tokens == []


def test_mutations_are_serialized(store_path):
    store = _loaded(store_path)
    _mutate(store, lambda: store.add_bill(Bill(id="counter", name="Counter", due_day=1, amount=0)))

    async def bump():
        async with store.mutation():
            bill = store.require_bill("counter")
            current = bill.amount
            await asyncio.sleep(0)
            bill.amount = current + 1

    async def run_all():
        await asyncio.gather(*(bump() for _ in range(20)))

    asyncio.run(run_all())

    assert store.require_bill("counter").amount == 20
    assert json.loads(store_path.read_text())["bills"][0]["amount"] == 20


def test_failed_write_keeps_memory_change_and_releases_lock(client, store_path, monkeypatch):
    before = store_path.read_text()

    def refuse(self, document):
        raise OSError("read-only file system")

    monkeypatch.setattr(BillStore, "_write_document", refuse)

    response = client.post("/api/bills", json={"id": "gym", "name": "Gym", "dueDay": 15, "amount": 40})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert [bill["id"] for bill in client.get("/api/bills").json()] == ["gym"]
    assert store_path.read_text() == before

    monkeypatch.undo()
    follow_up = client.post("/api/bills", json={"id": "rent", "name": "Rent", "dueDay": 1})

    assert follow_up.status_code == 201
    assert [bill["id"] for bill in json.loads(store_path.read_text())["bills"]] == ["gym", "rent"]
