"""Unit tests for the persisted accumulated-cost store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import json
from pathlib import Path

import pytest

from bedrock_burner.io.state_store import AccumulatedCostStore


def test_store_starts_at_zero_and_accumulates(tmp_path: Path) -> None:
    """Missing files should read as zero and additions should persist as decimals."""

    store = AccumulatedCostStore(tmp_path / "state" / "burn.json")

    assert store.load() == Decimal(0)
    assert store.add(Decimal("0.00105")) == Decimal("0.00105")
    assert store.add(Decimal("0.5")) == Decimal("0.50105")

    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert payload["accumulated_usd"] == "0.50105"
    assert "updated_at" in payload
    assert AccumulatedCostStore(store.path).load() == Decimal("0.50105")


def test_store_reset_returns_previous_total(tmp_path: Path) -> None:
    """Reset should zero the record and report what was there."""

    store = AccumulatedCostStore(tmp_path / "burn.json")
    store.add(Decimal("2.25"))

    assert store.reset() == Decimal("2.25")
    assert store.load() == Decimal(0)


def test_store_rejects_negative_additions(tmp_path: Path) -> None:
    """Accumulated cost should never decrease through `add`."""

    store = AccumulatedCostStore(tmp_path / "burn.json")

    with pytest.raises(ValueError, match="only grow"):
        store.add(Decimal("-1"))


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"other": 1}),
        json.dumps({"accumulated_usd": "abc"}),
        json.dumps({"accumulated_usd": "-3"}),
    ],
)
def test_store_rejects_corrupt_records(tmp_path: Path, content: str) -> None:
    """Corrupt or negative state should fail loudly instead of resetting spend."""

    path = tmp_path / "burn.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError):
        AccumulatedCostStore(path).load()


def test_store_does_not_lose_concurrent_updates(tmp_path: Path) -> None:
    """Concurrent writers through separate store objects should all be counted."""

    path = tmp_path / "burn.json"

    def _add_many(_: int) -> None:
        """Add a fixed amount repeatedly through a fresh store handle."""

        store = AccumulatedCostStore(path)
        for _ in range(25):
            store.add(Decimal("0.001"))

    with ThreadPoolExecutor(max_workers=4) as executor:
        list(executor.map(_add_many, range(4)))

    assert AccumulatedCostStore(path).load() == Decimal("0.100")
