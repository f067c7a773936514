from __future__ import annotations

from pathlib import Path

import pytest

from tradeledger.ledger.registry import LedgerRegistry, ledger_path, validate_user_id


@pytest.mark.parametrize("user_id", ["", "../escape", "a/b", "a b", "ä"])
def test_invalid_user_ids_are_rejected(user_id: str) -> None:
    with pytest.raises(ValueError):
        validate_user_id(user_id)


def test_ledger_path_stays_inside_data_dir(tmp_path: Path) -> None:
    path = ledger_path(tmp_path, "alice_01")
    assert path.parent == tmp_path.resolve()
    assert path.name == "ledger_alice_01.db"


def test_users_get_independent_ledgers(tmp_path: Path, make_trade) -> None:
    registry = LedgerRegistry(data_dir=tmp_path)

    alice = registry.get("alice")
    assert registry.get("alice") is alice

    bob = registry.get("bob")
    alice.save_trades([make_trade("a1", 1, "Buy", "1", "10", "1")])

    assert len(alice.load_all()) == 1
    assert bob.load_all() == []
    assert bob.load_meta().ledger_state().cumulative("USDT") == 0
    assert registry.users() == ["alice", "bob"]
    assert alice.store.path == tmp_path.resolve() / "ledger_alice.db"
    assert alice.store.path.exists()
