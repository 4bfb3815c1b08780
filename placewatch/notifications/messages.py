"""
Telegram message rendering.

Every function returns HTML text for Telegram's ``parse_mode=HTML``.
User-provided values (author names, review text, place names) are escaped.
"""

import json
import re
from html import escape
from typing import List, Dict, Any, Optional, Sequence
from urllib.parse import quote

from ..data.review_models import Review, Target

MAX_LISTED_REVIEWS = 10
SNIPPET_LENGTH = 120
QUICKCHART_URL = "https://quickchart.io/chart"

TAG_RE = re.compile(r"<(/?)([a-zA-Z]+)[^>]*>")


def stars(rating: int) -> str:
    """Star bar for a rating; unknown ratings render as a question mark."""
    if not 1 <= rating <= 5:
        return "?"
    return "⭐" * rating


def _snippet(text: str, length: int = SNIPPET_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) > length:
        text = text[:length].rstrip() + "..."
    return escape(text)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def render_new_reviews(target: Target, reviews: Sequence[Review], max_listed: int = MAX_LISTED_REVIEWS) -> str:
    """
    Batch message for newly inserted reviews.

    Lists at most ``max_listed`` reviews and ends with "...and N more" when
    the batch is larger.
    """
    count = len(reviews)
    lines = [f"✅ <b>{escape(target.display_name)}</b>: {_plural(count, 'new review')}"]

    for review in reviews[:max_listed]:
        line = f"{stars(review.rating)} <b>{escape(review.author_name)}</b>"
        if review.text:
            line += f"\n<i>{_snippet(review.text)}</i>"
        lines.append(line)

    if count > max_listed:
        lines.append(f"...and {count - max_listed} more")

    return "\n\n".join(lines)


def render_no_new_reviews(target: Target) -> str:
    return f"ℹ️ <b>{escape(target.display_name)}</b>: No new reviews found"


def render_empty_fetch(target: Target) -> str:
    return f"ℹ️ <b>{escape(target.display_name)}</b>: No reviews returned by the source"


def render_review_alert(review: Review, place_name: str = "") -> str:
    """Immediate alert for a single review."""
    title = f"New review for {escape(place_name)}" if place_name else "New review"
    rating = f"{review.rating}/5" if review.has_known_rating else "unrated"
    body = f"<b>Review:</b> {escape(review.text)}" if review.text else "<i>No review text</i>"
    return (
        f"\U0001f514 <b>{title}</b>\n\n"
        f"{stars(review.rating)} {rating}\n\n"
        f"<b>From:</b> {escape(review.author_name)}\n\n"
        f"{body}"
    )


def render_target_error(target: Target, message: str) -> str:
    return f"\U0001f6a8 <b>{escape(target.display_name)}</b>: sync failed\n<code>{escape(message[:300])}</code>"


def render_cycle_summary(targets_processed: int, status_counts: Dict[str, int], inserted_total: int) -> str:
    """Cross-target summary sent to the admin chat after a cycle."""
    parts = [f"{status}: {count}" for status, count in sorted(status_counts.items()) if count]
    line = f"\U0001f4e6 Review sync completed for {targets_processed} location(s)."
    if inserted_total:
        line += f"\n{_plural(inserted_total, 'new review')} stored."
    if parts:
        line += f"\n{', '.join(parts)}"
    return line


def format_uptime(seconds: float) -> str:
    """Uptime as "<d>d <h>h <m>m"."""
    seconds = int(max(seconds, 0))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    return f"{days}d {hours}h {minutes}m"


def render_heartbeat(
    uptime_seconds: float,
    memory_mb: Optional[float],
    last_cycle_at: Optional[str],
    next_cycle_at: Optional[str],
) -> str:
    memory = f"{memory_mb:.0f} MB" if memory_mb is not None else "N/A"
    return (
        "✅ <b>Scheduler Heartbeat OK</b>\n"
        f"Uptime: {format_uptime(uptime_seconds)}\n"
        f"Last successful sync: {escape(last_cycle_at or 'N/A')}\n"
        f"Next sync: {escape(next_cycle_at or 'N/A')}\n"
        f"Memory: {memory}"
    )


def build_chart_url(daily_counts: List[Dict[str, Any]]) -> str:
    """QuickChart bar chart URL for daily review counts."""
    chart = {
        "type": "bar",
        "data": {
            "labels": [d["day"] for d in daily_counts],
            "datasets": [{"label": "Reviews", "data": [d["count"] for d in daily_counts]}],
        },
    }
    return f"{QUICKCHART_URL}?c={quote(json.dumps(chart, separators=(',', ':')))}"


def render_weekly_summary(daily_counts: List[Dict[str, Any]], status_counts: Dict[str, int]) -> str:
    """Periodic summary re-aggregated from stored reviews."""
    total = sum(d["count"] for d in daily_counts)
    lines = ["\U0001f4ca <b>Weekly Review Summary</b>", f"{_plural(total, 'new review')} in the last {len(daily_counts)} days"]
    for d in daily_counts:
        lines.append(f"{d['day']}: {d['count']}")
    if status_counts:
        outcomes = ", ".join(f"{k}: {v}" for k, v in sorted(status_counts.items()))
        lines.append(f"Sync outcomes: {outcomes}")
    lines.append(escape(build_chart_url(daily_counts)))
    return "\n".join(lines)


def truncate_html(text: str, limit: int, suffix: str = "...") -> str:
    """
    Shorten rendered HTML to at most ``limit`` characters.

    Cuts at the last line break when one is close to the limit, never
    inside a tag or an entity, and closes any tag left open.
    """
    if len(text) <= limit:
        return text

    # room for the suffix and the closing tags of our nesting depth
    budget = max(limit - len(suffix) - 16, 0)
    cut = text[:budget]

    newline = cut.rfind("\n")
    if newline >= budget * 3 // 4:
        cut = cut[:newline]
    if cut.rfind("<") > cut.rfind(">"):
        cut = cut[:cut.rfind("<")]
    if cut.rfind("&") > cut.rfind(";"):
        cut = cut[:cut.rfind("&")]

    open_tags = []
    for match in TAG_RE.finditer(cut):
        closing, name = match.group(1), match.group(2).lower()
        if not closing:
            open_tags.append(name)
        elif name in open_tags:
            del open_tags[len(open_tags) - 1 - open_tags[::-1].index(name)]

    closers = "".join(f"</{name}>" for name in reversed(open_tags))
    return cut + suffix + closers
