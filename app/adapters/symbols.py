from __future__ import annotations

import re

# Seed table of ticker -> CoinGecko id. Refreshed at runtime from the
# market-cap listing, see IdentifierResolver.refresh_known_ids.
CANONICAL_IDS: dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "usdt": "tether",
    "bnb": "binancecoin",
    "sol": "solana",
    "xrp": "ripple",
    "usdc": "usd-coin",
    "steth": "staked-ether",
    "ada": "cardano",
    "avax": "avalanche-2",
    "trx": "tron",
    "wbtc": "wrapped-bitcoin",
    "link": "chainlink",
    "dot": "polkadot",
    "matic": "matic-network",
    "dai": "dai",
    "shib": "shiba-inu",
    "ltc": "litecoin",
    "bch": "bitcoin-cash",
    "uni": "uniswap",
    "atom": "cosmos",
    "etc": "ethereum-classic",
    "xlm": "stellar",
    "near": "near",
    "algo": "algorand",
    "vet": "vechain",
    "fil": "filecoin",
    "icp": "internet-computer",
    "hbar": "hedera-hashgraph",
    "apt": "aptos",
    "doge": "dogecoin",
    "sui": "sui",
}

ALIASES: dict[str, str] = {
    "xbt": "btc",
    "bitcoin": "btc",
    "ethereum": "eth",
    "ether": "eth",
    "solana": "sol",
    "dogecoin": "doge",
    "ripple": "xrp",
}

_QUOTES = ("usdt", "usdc", "busd", "usd")
_TICKER_RE = re.compile(r"^[a-z0-9]{1,20}$")


def normalize_ticker(raw: str) -> str:
    """Lowercase a user ticker and strip ``$``, whitespace and a separated quote.

    Only ``btc/usdt`` style pairs lose their quote; ``crvusd`` stays as typed.
    """
    s = str(raw or "").strip().lower().replace("$", "")
    s = re.sub(r"\s+", "", s)
    s = s.replace("_", "/").replace("-", "/")
    if "/" in s:
        left, _, right = s.partition("/")
        if left and right in _QUOTES:
            s = left
    return ALIASES.get(s, s)


def is_valid_ticker(ticker: str) -> bool:
    return bool(_TICKER_RE.match(ticker or ""))


def symbol_for_id(canonical_id: str, table: dict[str, str] | None = None) -> str:
    """Display symbol for a canonical id; unknown ids are upper-cased as is."""
    lowered = (canonical_id or "").lower()
    for ticker, cid in (table or CANONICAL_IDS).items():
        if cid == lowered:
            return ticker.upper()
    if lowered in (table or CANONICAL_IDS):
        return lowered.upper()
    return (canonical_id or "").upper()
