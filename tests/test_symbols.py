from __future__ import annotations

import pytest

from app.adapters.symbols import is_valid_ticker, normalize_ticker, symbol_for_id


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("BTC", "btc"),
        ("  $eth ", "eth"),
        ("sol/usdt", "sol"),
        ("SOL-USD", "sol"),
        ("PEPEUSDT", "pepeusdt"),
        ("crvusd", "crvusd"),
        ("pyusd", "pyusd"),
        ("eth_usdc", "eth"),
        ("usdt", "usdt"),
        ("busd", "busd"),
        ("Bitcoin", "btc"),
        ("xbt", "btc"),
    ],
)
def test_normalize_ticker(raw: str, expected: str) -> None:
    assert normalize_ticker(raw) == expected


def test_is_valid_ticker() -> None:
    assert is_valid_ticker("btc")
    assert not is_valid_ticker("")
    assert not is_valid_ticker("b" * 21)
    assert not is_valid_ticker("btc!")


def test_symbol_for_id() -> None:
    assert symbol_for_id("bitcoin") == "BTC"
    assert symbol_for_id("avalanche-2") == "AVAX"
    assert symbol_for_id("some-new-coin") == "SOME-NEW-COIN"
    assert symbol_for_id("hyperliquid", {"hype": "hyperliquid"}) == "HYPE"
