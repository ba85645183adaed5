from __future__ import annotations
from dataclasses import dataclass

# Page indexes are zero-based throughout.


@dataclass(frozen=True)
class PagePlan:
    page_count: int
    page_index: int
    offset: int
    page_size: int


def compute_page_count(total: int, page_size: int) -> int:
    if total < 0:
        raise ValueError("total cannot be negative")
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    return max(1, (total + page_size - 1) // page_size)


def clamp_page_index(requested: int, page_count: int) -> int:
    if page_count < 1:
        raise ValueError("page_count must be at least 1")
    return min(max(0, requested), page_count - 1)


def page_offset(page_index: int, page_size: int) -> int:
    return max(0, page_index) * page_size


def plan_page(total: int, page_size: int, requested: int) -> PagePlan:
    pages = compute_page_count(total, page_size)
    idx = clamp_page_index(requested, pages)
    return PagePlan(page_count=pages, page_index=idx, offset=page_offset(idx, page_size), page_size=page_size)
