"""Split record sequences into bounded pages and render them as messages."""

from __future__ import annotations

from datetime import datetime, tzinfo

from insurance_tracker import blocks
from insurance_tracker.expiry import classify, format_date, format_timestamp
from insurance_tracker.models import InsuranceRecord, Page, PageStyle

DEFAULT_PAGE_SIZE = 10


def paginate(records: list[InsuranceRecord], page_size: int = DEFAULT_PAGE_SIZE) -> list[Page]:
    """Partition ``records`` into contiguous pages, preserving order.

    An empty input yields no pages at all.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")
    chunks = [records[i:i + page_size] for i in range(0, len(records), page_size)]
    return [Page(records=chunk, index=i, total=len(chunks)) for i, chunk in enumerate(chunks)]


def relative_time(then: datetime, now: datetime) -> str:
    """Humanized distance, e.g. "3 hours ago" or "in 2 days"."""
    seconds = (now - then).total_seconds()
    past = seconds >= 0
    seconds = abs(seconds)
    minutes = seconds / 60
    hours = minutes / 60
    days = hours / 24

    if seconds < 45:
        phrase = "a few seconds"
    elif seconds < 90:
        phrase = "a minute"
    elif minutes < 45:
        phrase = f"{round(minutes)} minutes"
    elif minutes < 90:
        phrase = "an hour"
    elif hours < 22:
        phrase = f"{round(hours)} hours"
    elif hours < 36:
        phrase = "a day"
    elif days < 26:
        phrase = f"{round(days)} days"
    elif days < 45:
        phrase = "a month"
    elif days < 320:
        phrase = f"{round(days / 30.4)} months"
    elif days < 548:
        phrase = "a year"
    else:
        phrase = f"{round(days / 365)} years"

    return f"{phrase} ago" if past else f"in {phrase}"


def render_record(record: InsuranceRecord, now: datetime, tz: tzinfo) -> dict:
    status = classify(record.expiry_at, now, tz)
    lines = [
        f"*{status.tier.label} {record.vehicle_name.upper()} ({record.plate_id})*",
        f"\U0001f4c5 *Expiry:* {format_date(record.expiry_at, tz)}",
        f"⏳ *Days Left:* {status.days_left}",
        f"\U0001f464 *Added By:* {record.registered_by}",
        f"\U0001f504 *Last Updated:* {relative_time(record.updated_at, now)}",
    ]
    return blocks.section("\n".join(lines))


def render_page(
    page: Page,
    style: PageStyle,
    *,
    total_count: int,
    now: datetime,
    tz: tzinfo,
) -> dict:
    """Render one page as a ``chat.postMessage`` payload (``text`` + ``blocks``).

    Page 1 carries the preamble, headline banner and origin footer; later
    pages carry a "(PART n)" title and a "Part n of m" footer instead.
    """
    timestamp = format_timestamp(now, tz)
    values = {
        "count": total_count,
        "plural": "" if total_count == 1 else "S",
        "timestamp": timestamp,
    }

    out: list[dict] = []
    if page.is_first:
        title = style.title
        if style.preamble:
            out.append(blocks.section(style.preamble))
        out.append(blocks.header(title))
        if style.headline:
            out.append(blocks.section(style.headline.format(**values)))
    else:
        title = f"{style.later_title or style.title} (PART {page.number})"
        out.append(blocks.header(title))

    for record in page.records:
        out.append(render_record(record, now, tz))

    if page.is_first:
        out.append(blocks.context(style.origin.format(**values)))
    else:
        out.append(blocks.context(f"Part {page.number} of {page.total}"))

    fallback = style.preamble if page.is_first and style.preamble else title
    return {"text": fallback, "blocks": out}


def render_pages(
    records: list[InsuranceRecord],
    style: PageStyle,
    *,
    now: datetime,
    tz: tzinfo,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[dict]:
    return [
        render_page(page, style, total_count=len(records), now=now, tz=tz)
        for page in paginate(records, page_size)
    ]
