from __future__ import annotations

NA = "N/A"


def safe_html(text: str) -> str:
    """Escape special HTML characters so dynamic content is safe in HTML parse_mode."""
    return str(text).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def fmt_price(v: float | None) -> str:
    """Price with precision scaled to magnitude: $67,000.12, $1.234, $0.000123"""
    if v is None:
        return NA
    if v >= 1_000:
        return f"${v:,.2f}"
    if v >= 1:
        return f"${v:.3f}"
    if v >= 0.01:
        return f"${v:.4f}"
    return f"${v:.8f}"


def fmt_local(v: float | None, currency: str) -> str:
    if v is None:
        return NA
    return f"{currency.upper()} {v:,.0f}" if v >= 100 else f"{currency.upper()} {v:,.2f}"


def fmt_large(v: float | None) -> str:
    """Market cap / volume: $1.3T, $45.2B, $820.0M"""
    if v is None:
        return NA
    if v >= 1e12:
        return f"${v / 1e12:.1f}T"
    if v >= 1e9:
        return f"${v / 1e9:.1f}B"
    if v >= 1e6:
        return f"${v / 1e6:.1f}M"
    return f"${v:,.0f}"


def fmt_pct(v: float | None) -> str:
    if v is None:
        return NA
    return f"{v:+.2f}%"
