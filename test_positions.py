"""Tests for the position store."""
from datetime import datetime
from decimal import Decimal

import pytest

from portfolio_tracker.core.errors import PositionValidationError
from portfolio_tracker.core.models import AssetType
from portfolio_tracker.core.positions import PositionStore


def test_save_and_get(conn):
    store = PositionStore(conn)

    saved = store.save("sh600519", "贵州茅台", "1500.5", 10)

    fetched = store.get("sh600519")
    assert fetched == saved
    assert fetched.cost_price == Decimal("1500.5")
    assert fetched.shares == Decimal("10")
    assert fetched.asset_type is AssetType.EQUITY


def test_resave_overwrites_but_keeps_identity(conn):
    store = PositionStore(conn)
    first = store.save("110020", "Fund A", 1.2, 1000, now=datetime(2024, 1, 1, 9, 0))

    second = store.save("110020", "Fund A (renamed)", 1.3, 500, now=datetime(2024, 2, 1, 9, 0))

    assert second.id == first.id
    assert second.created_at == datetime(2024, 1, 1, 9, 0)
    assert second.updated_at == datetime(2024, 2, 1, 9, 0)
    assert second.name == "Fund A (renamed)"
    assert second.cost_price == Decimal("1.3")
    assert second.shares == Decimal("500")
    assert len(store.list()) == 1


@pytest.mark.parametrize("code, name, cost, shares", [
    ("", "Name", 10, 1),
    ("sh600000", "  ", 10, 1),
    ("sh600000", "Name", 0, 1),
    ("sh600000", "Name", -5, 1),
    ("sh600000", "Name", 10, 0),
    ("sh600000", "Name", None, 1),
    ("sh600000", "Name", 10, "abc"),
    ("sh600000", "Name", float("nan"), 1),
])
def test_invalid_input_is_rejected_before_writing(conn, code, name, cost, shares):
    store = PositionStore(conn)

    with pytest.raises(PositionValidationError):
        store.save(code, name, cost, shares)

    assert store.list() == []


@pytest.mark.parametrize("cost", ["0.000000001", "0.000000004", "10000000000", "100000000000", "1e30"])
def test_amounts_outside_storage_range_are_rejected(conn, cost):
    store = PositionStore(conn)

    with pytest.raises(PositionValidationError):
        store.save("sh600000", "Name", cost, 10)

    assert store.list() == []


@pytest.mark.parametrize("cost, stored", [
    ("0.00000001", Decimal("0.00000001")),
    ("0.000000014", Decimal("0.00000001")),
    ("9999999999.99", Decimal("9999999999.99")),
    (0.30000000000000004, Decimal("0.3")),
])
def test_amounts_at_storage_edges_are_kept(conn, cost, stored):
    position = PositionStore(conn).save("sh600000", "Name", cost, 10)

    assert position.cost_price == stored
    assert position.cost_price > 0


def test_validation_error_is_a_value_error():
    assert issubclass(PositionValidationError, ValueError)


def test_list_is_most_recently_touched_first(conn):
    store = PositionStore(conn)
    store.save("sh600000", "A", 10, 1, now=datetime(2024, 1, 1))
    store.save("sz000001", "B", 10, 1, now=datetime(2024, 1, 2))
    store.save("110020", "C", 1, 1, now=datetime(2024, 1, 3))

    assert [p.code for p in store.list()] == ["110020", "sz000001", "sh600000"]

    store.touch("sh600000", now=datetime(2024, 1, 4))

    assert [p.code for p in store.list()] == ["sh600000", "110020", "sz000001"]


def test_list_codes(conn):
    store = PositionStore(conn)
    store.save("sz000001", "B", 10, 1)
    store.save("110020", "C", 1, 1)

    assert sorted(store.list_codes()) == ["110020", "sz000001"]


def test_delete(conn):
    store = PositionStore(conn)
    store.save("sz000001", "B", 10, 1)

    assert store.delete("sz000001") is True
    assert store.delete("sz000001") is False
    assert store.get("sz000001") is None


def test_rename(conn):
    store = PositionStore(conn)
    store.save("sz000001", "old name", 10, 1)

    store.rename("sz000001", "平安银行")

    assert store.get("sz000001").name == "平安银行"
