"""Filtering and summary statistics over persisted conversation history."""

from dataclasses import dataclass
from datetime import datetime, timezone

from src.cli.protocol import HistoryRecord

ALL_PAGES = "all"


@dataclass(frozen=True)
class HistoryStats:
    """Counts shown above the history listing."""

    total_queries: int
    successful_queries: int
    graph_queries: int
    email_suggestions: int


def filter_records(
    records: list[HistoryRecord],
    search: str | None = None,
    page_name: str | None = None,
) -> list[HistoryRecord]:
    """Select records matching a search term and page.

    Args:
        records: Records in backend order.
        search: Case-insensitive substring matched against the question
            and the response explanation. Blank matches everything.
        page_name: Page to keep. None or "all" keeps every page.

    Returns:
        Matching records, order preserved.
    """
    filtered = list(records)
    if search and search.strip():
        needle = search.lower()
        filtered = [
            r
            for r in filtered
            if needle in r.user_input.lower()
            or needle in r.response_data.explanation.lower()
        ]
    if page_name and page_name != ALL_PAGES:
        filtered = [r for r in filtered if r.page_name == page_name]
    return filtered


def unique_pages(records: list[HistoryRecord]) -> list[str]:
    """Distinct non-empty page names, in first-seen order."""
    seen: dict[str, None] = {}
    for record in records:
        if record.page_name:
            seen.setdefault(record.page_name, None)
    return list(seen)


def compute_stats(records: list[HistoryRecord]) -> HistoryStats:
    """Summary counts; a query counts as successful when it produced real SQL."""
    return HistoryStats(
        total_queries=len(records),
        successful_queries=sum(1 for r in records if r.response_data.has_sql),
        graph_queries=sum(1 for r in records if r.response_data.is_graph_query),
        email_suggestions=sum(1 for r in records if r.response_data.suggest_email),
    )


def describe_age(created_at: datetime, now: datetime | None = None) -> str:
    """Human label for how long ago a record was created.

    Naive timestamps are taken as UTC.
    """
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    days = abs((now - created_at).days)
    if days == 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    return created_at.date().isoformat()
