from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Sequence, TypeVar


T = TypeVar("T")

ELLIPSIS = "..."


@dataclass
class Page(Generic[T]):
    page_items: list[T]
    total_pages: int
    total_items: int
    current_page: int = 1
    page_size: int = 10
    page_numbers: list[int | str] = field(default_factory=list)


def total_pages_for(total_items: int, page_size: int) -> int:
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    return math.ceil(max(0, total_items) / page_size)


def paginate(items: Sequence[T], page: int, page_size: int) -> Page[T]:
    total_pages = total_pages_for(len(items), page_size)
    start = max(0, (page - 1) * page_size)
    page_items = list(items[start : start + page_size]) if page >= 1 else []
    return Page(
        page_items=page_items,
        total_pages=total_pages,
        total_items=len(items),
        current_page=page,
        page_size=page_size,
    )


def page_numbers(current: int, total: int, max_visible: int = 5) -> list[int | str]:
    """Page buttons to render: first, last, and a 3-page window around ``current``.

    The window is shifted, not shrunk, at either end so it stays inside
    ``[2, total - 1]``. ``"..."`` marks any gap between the window and the ends.
    """
    if total <= max_visible:
        return list(range(1, total + 1))
    start = max(2, current - 1)
    end = min(total - 1, current + 1)
    if current <= 3:
        start, end = 2, 4
    if current >= total - 2:
        start, end = total - 3, total - 1
    pages: list[int | str] = [1]
    if start > 2:
        pages.append(ELLIPSIS)
    pages.extend(range(start, end + 1))
    if end < total - 1:
        pages.append(ELLIPSIS)
    pages.append(total)
    return pages


class Paginator(Generic[T]):
    def __init__(
        self,
        page_size: int = 10,
        *,
        max_visible: int = 5,
        on_page_change: Callable[[int], Any] | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.max_visible = max_visible
        self.current_page = 1
        self.on_page_change = on_page_change
        self._items: list[T] = []

    @property
    def total_items(self) -> int:
        return len(self._items)

    @property
    def total_pages(self) -> int:
        return total_pages_for(len(self._items), self.page_size)

    def set_items(self, items: Sequence[T]) -> None:
        self._items = list(items)
        self.current_page = min(self.current_page, max(self.total_pages, 1))

    def reset(self) -> None:
        self.current_page = 1

    def change_page(self, page: int) -> bool:
        if page < 1 or page > max(self.total_pages, 1):
            return False
        self.current_page = page
        if self.on_page_change is not None:
            self.on_page_change(page)
        return True

    def set_page_size(self, page_size: int) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.reset()

    def item_range(self) -> tuple[int, int]:
        if not self._items:
            return 0, 0
        first = (self.current_page - 1) * self.page_size + 1
        last = min(self.current_page * self.page_size, len(self._items))
        return first, last

    def page(self) -> Page[T]:
        result = paginate(self._items, self.current_page, self.page_size)
        result.page_numbers = page_numbers(self.current_page, result.total_pages, self.max_visible)
        return result


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class RemotePaginator:
    """Page state for a list the server pages itself.

    Only the current page's items are ever held locally; totals come from the
    server's ``{page, limit, total, pages}`` metadata.
    """

    def __init__(self, page_size: int = 20, *, max_visible: int = 5) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.max_visible = max_visible
        self.current_page = 1
        self.total_items = 0
        self.total_pages = 0

    def update(self, meta: dict[str, Any], requested_page: int) -> None:
        self.current_page = max(1, _as_int(meta.get("page"), requested_page))
        self.page_size = max(1, _as_int(meta.get("limit"), self.page_size))
        self.total_items = max(0, _as_int(meta.get("total"), 0))
        self.total_pages = max(0, _as_int(meta.get("pages"), total_pages_for(self.total_items, self.page_size)))

    def in_range(self, page: int) -> bool:
        return 1 <= page <= max(self.total_pages, 1)

    def reset(self) -> None:
        self.current_page = 1
        self.total_items = 0
        self.total_pages = 0

    def set_page_size(self, page_size: int) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.current_page = 1

    def item_range(self, shown: int) -> tuple[int, int]:
        if shown <= 0:
            return 0, 0
        first = (self.current_page - 1) * self.page_size + 1
        return first, first + shown - 1

    def page_numbers(self) -> list[int | str]:
        return page_numbers(self.current_page, self.total_pages, self.max_visible)
