from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit, urlunsplit

from app.core.fmt import NA, fmt_large, fmt_local, fmt_pct, fmt_price, safe_html
from app.core.models import CoinOverview, NewsArticle, PriceSnapshot

GENERIC_FAILURE = "Could not retrieve that information right now. Please try again later."


def _clean_url(raw: str) -> str:
    parts = urlsplit(raw or "")
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return ""
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))


def _trend(change: float | None) -> str:
    if change is None:
        return "·"
    return "📈" if change >= 0 else "📉"


def help_text() -> str:
    return "\n".join(
        [
            "<b>Coin News Bot</b>",
            "",
            "<code>btc</code> or <code>/price btc</code> - live price",
            "<code>/info eth</code> - price + fundamentals",
            "<code>/news</code> - latest crypto headlines",
            "<code>/news solana</code> - headlines for a keyword",
            "<code>/subscribe sol</code> - daily coin news with the digest",
            "<code>/unsubscribe</code> - stop coin news",
            "<code>/status</code> - your subscription",
        ]
    )


def unknown_ticker_text(ticker: str) -> str:
    return f"Couldn't find a coin for <code>{safe_html(ticker)}</code>. Check the ticker and try again."


def price_template(snapshot: PriceSnapshot) -> str:
    lines = [
        f"{_trend(snapshot.change_24h_pct)} <b>{safe_html(snapshot.symbol)}</b>",
        f"Price: <b>{fmt_price(snapshot.price_usd)}</b> · {fmt_local(snapshot.price_local, snapshot.local_currency)}",
        f"24h: {fmt_pct(snapshot.change_24h_pct)}",
        f"Volume 24h: {fmt_large(snapshot.volume_24h_usd)}",
        f"Market cap: {fmt_large(snapshot.market_cap_usd)}",
    ]
    if snapshot.is_fallback:
        lines += ["", "<i>Live data unavailable, showing reference values.</i>"]
    return "\n".join(lines)


def coin_info_template(overview: CoinOverview) -> str:
    meta = overview.metadata
    snap = overview.snapshot
    name = meta.name if meta else (snap.symbol if snap else overview.canonical_id.upper())
    symbol = meta.symbol if meta else (snap.symbol if snap else overview.canonical_id.upper())
    lines = [f"<b>{safe_html(name)}</b> ({safe_html(symbol)})", ""]

    if snap:
        lines.append(f"Price: <b>{fmt_price(snap.price_usd)}</b> ({fmt_pct(snap.change_24h_pct)})")
    if meta:
        rank = f"#{meta.market_cap_rank}" if meta.market_cap_rank else NA
        genesis = str(meta.genesis_date.year) if meta.genesis_date else NA
        lines += [
            f"Rank: {rank}",
            f"Market cap: {fmt_large(meta.market_cap_usd)}",
            f"Volume 24h: {fmt_large(meta.volume_24h_usd)}",
            f"Launched: {genesis}",
        ]
        if meta.description:
            lines += ["", safe_html(meta.description)]
    if snap and snap.is_fallback:
        lines += ["", "<i>Live price unavailable, showing reference values.</i>"]
    return "\n".join(lines)


def news_template(articles: list[NewsArticle], title: str = "Crypto News") -> str:
    if not articles:
        return "No fresh headlines right now."
    lines = [f"<b>{safe_html(title)}</b>", ""]
    for idx, item in enumerate(articles, start=1):
        lines.append(f"<b>{idx}. {safe_html(item.title)}</b>")
        meta = safe_html(item.source_name)
        if item.published_at:
            meta += f" · {safe_html(item.published_at)}"
        url = _clean_url(item.url)
        if url and not item.is_fallback:
            meta += f' · <a href="{safe_html(url)}">read →</a>'
        lines.append(f"<i>{meta}</i>")
        lines.append("")
    if any(a.is_fallback for a in articles):
        lines.append("<i>News sources are unavailable, showing placeholder topics.</i>")
    return "\n".join(lines).rstrip()


def market_summary_template(snapshots: list[PriceSnapshot], overview: dict[str, Any] | None = None) -> str:
    if not snapshots:
        return GENERIC_FAILURE
    lines = ["📊 <b>Market summary</b>", ""]
    if overview:
        total = fmt_large(overview.get("total_market_cap_usd"))
        change = fmt_pct(overview.get("market_cap_change_24h_pct"))
        dominance = overview.get("btc_dominance")
        lines.append(f"Total cap: {total} ({change})")
        lines.append("BTC dominance: " + (NA if dominance is None else f"{dominance:.1f}%"))
        lines.append("")
    for snap in snapshots:
        lines.append(f"{_trend(snap.change_24h_pct)} <b>{safe_html(snap.symbol)}</b>")
        lines.append(
            f"   {fmt_price(snap.price_usd)} ({fmt_pct(snap.change_24h_pct)}) · "
            f"{fmt_local(snap.price_local, snap.local_currency)}"
        )
    if any(s.is_fallback for s in snapshots):
        lines += ["", "<i>Some prices are reference values.</i>"]
    lines += ["", "<i>Not financial advice.</i>"]
    return "\n".join(lines)


def status_template(subscription: str | None) -> str:
    if not subscription:
        return "No coin subscription. You still get the daily digest.\nUse <code>/subscribe btc</code> to add coin news."
    return f"Subscribed to <b>{safe_html(subscription.upper())}</b> news with the daily digest."
