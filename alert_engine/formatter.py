from common.schemas import Alert, CorrelationResult

DISCLAIMER = (
    "Not financial advice. Social-media buzz is not a price signal and memecoins "
    "can lose most of their value within hours; do your own research."
)

HASHTAGS = "#memecoin #crypto"
TWEET_LIMIT = 280


def summary(r: CorrelationResult) -> str:
    """
    One human-readable sentence per result. Safe for zero/missing market fields.
    """
    hours = (r.window_end - r.window_start).total_seconds() / 3600.0
    parts = [f"${r.token_symbol}: {r.mention_count} mentions in {hours:g}h ({r.mention_delta:+.1f} vs trailing avg)"]
    if r.volume_growth_rate or r.volume_growth_usd_per_hour:
        parts.append(f"24h volume {r.volume_growth_rate:+.0%} (${r.volume_growth_usd_per_hour:+,.0f}/h)")
    if r.price_usd is not None:
        parts.append(f"price ${r.price_usd:.8g}")
    return ", ".join(parts) + f". Score {r.score:.2f}, {r.risk_tag.value} risk."


def one_line(alert: Alert) -> str:
    reasons = "; ".join(alert.reasons) or "-"
    return f"[{alert.ticker}] score={alert.score:.2f} risk={alert.risk_tag.value} | {reasons}"


def tweet_text(alert: Alert, limit: int = TWEET_LIMIT) -> str:
    # the disclaimer is mandatory; the summary is what gets cut
    tail = f"\n\n{alert.disclaimer}\n{HASHTAGS} #{alert.ticker}"
    head = f"\U0001F6A8 {alert.summary}"
    room = limit - len(tail)
    if len(head) > room:
        head = head[: max(room - 1, 0)].rstrip() + "…"
    return head + tail
