"""History query engine.

Derives the display list of the history screen from the raw conversation
collection: tab filter, search, sort, recency buckets and flattening. Nothing
here mutates the conversations it is given.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, List, Literal, Optional, Union

from pydantic import BaseModel

from ..domain.models import Conversation, now_ms

ONE_MINUTE = 60 * 1000
ONE_HOUR = 60 * ONE_MINUTE
ONE_DAY = 24 * ONE_HOUR

# (label, exclusive upper bound on age); anything older lands in "Older"
BUCKETS = (
    ("Today", ONE_DAY),
    ("Yesterday", 2 * ONE_DAY),
    ("This Week", 7 * ONE_DAY),
    ("Past 30 Days", 30 * ONE_DAY),
)
OLDER = "Older"
BUCKET_ORDER = [label for label, _ in BUCKETS] + [OLDER]


class HistoryTab(str, Enum):
    ALL = "all"
    PINNED = "pinned"
    TODAY = "today"


class SortMode(str, Enum):
    RECENT = "recent"
    AZ = "az"


class HistorySection(BaseModel):
    """A group of conversations; label is None for the A-Z listing."""

    label: Optional[str] = None
    conversations: List[Conversation]


class HistoryHeader(BaseModel):
    kind: Literal["header"] = "header"
    key: str
    label: str


class HistoryItem(BaseModel):
    kind: Literal["item"] = "item"
    key: str
    conversation: Conversation


HistoryEntry = Union[HistoryHeader, HistoryItem]


def bucket_label(updated_at: int, now: int) -> str:
    """Recency bucket for a conversation last updated at updated_at."""
    age = now - updated_at
    for label, limit in BUCKETS:
        if age < limit:
            return label
    return OLDER


def format_relative_time(timestamp: int, now: Optional[int] = None) -> str:
    """Short timestamp for list rows: "Just now", "5m ago", "3h ago", "Oct 19"."""
    now = now_ms() if now is None else now
    age = now - timestamp
    if age < ONE_MINUTE:
        return "Just now"
    if age < ONE_HOUR:
        return f"{age // ONE_MINUTE}m ago"
    if age < ONE_DAY:
        return f"{age // ONE_HOUR}h ago"
    date = datetime.fromtimestamp(timestamp / 1000)
    return f"{date:%b} {date.day}"


def filter_conversations(
    conversations: Iterable[Conversation],
    query: str = "",
    tab: Union[HistoryTab, str] = HistoryTab.ALL,
    now: Optional[int] = None,
) -> List[Conversation]:
    """Apply the tab filter, then the case-insensitive title/preview search."""
    tab = HistoryTab(tab)
    now = now_ms() if now is None else now
    result = list(conversations)

    if tab == HistoryTab.PINNED:
        result = [c for c in result if c.is_pinned]
    elif tab == HistoryTab.TODAY:
        result = [c for c in result if now - c.updated_at < ONE_DAY]

    needle = query.strip().lower()
    if needle:
        result = [
            c for c in result
            if needle in c.title.lower() or needle in c.preview.lower()
        ]
    return result


def sort_conversations(
    conversations: Iterable[Conversation],
    sort: Union[SortMode, str] = SortMode.RECENT,
) -> List[Conversation]:
    if SortMode(sort) == SortMode.AZ:
        return sorted(conversations, key=lambda c: (c.title.casefold(), c.title))
    return sorted(conversations, key=lambda c: c.updated_at, reverse=True)


def group_history(
    conversations: Iterable[Conversation],
    query: str = "",
    tab: Union[HistoryTab, str] = HistoryTab.ALL,
    sort: Union[SortMode, str] = SortMode.RECENT,
    now: Optional[int] = None,
) -> List[HistorySection]:
    """Filter, search and sort, then split into display sections.

    A-Z yields a single unlabeled section. Recent yields one section per
    non-empty recency bucket, in bucket order.
    """
    now = now_ms() if now is None else now
    ordered = sort_conversations(filter_conversations(conversations, query, tab, now), sort)
    if not ordered:
        return []
    if SortMode(sort) == SortMode.AZ:
        return [HistorySection(label=None, conversations=ordered)]

    groups = {label: [] for label in BUCKET_ORDER}
    for conversation in ordered:
        groups[bucket_label(conversation.updated_at, now)].append(conversation)
    return [
        HistorySection(label=label, conversations=groups[label])
        for label in BUCKET_ORDER
        if groups[label]
    ]


def flatten_sections(sections: Iterable[HistorySection]) -> List[HistoryEntry]:
    entries: List[HistoryEntry] = []
    for section in sections:
        if section.label is not None:
            entries.append(HistoryHeader(key=section.label, label=section.label))
        entries.extend(
            HistoryItem(key=conversation.id, conversation=conversation)
            for conversation in section.conversations
        )
    return entries


def query_history(
    conversations: Iterable[Conversation],
    query: str = "",
    tab: Union[HistoryTab, str] = HistoryTab.ALL,
    sort: Union[SortMode, str] = SortMode.RECENT,
    now: Optional[int] = None,
) -> List[HistoryEntry]:
    """Build the flattened history list: headers and items in display order."""
    return flatten_sections(group_history(conversations, query, tab, sort, now))
