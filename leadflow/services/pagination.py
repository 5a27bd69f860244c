"""
Offset pagination shared by list endpoints.
"""
import math
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class Page:
    items: list[Any] = field(default_factory=list)
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    total_items: int = 0
    total_pages: int = 1


def clamp_paging(page: int, page_size: int) -> tuple[int, int]:
    """page >= 1; page_size defaults to 20 when < 1 and is capped at 100."""
    page = page if page >= 1 else 1
    page_size = page_size if page_size >= 1 else DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


def total_pages_for(total_items: int, page_size: int) -> int:
    return 1 if total_items == 0 else math.ceil(total_items / page_size)


async def paginate(db: AsyncSession, stmt: Select, order_by, page: int, page_size: int) -> Page:
    """
    Count, clamp the page to the last one, and fetch a single page of rows.

    `stmt` must be unordered; `order_by` is applied after counting.
    """
    page, page_size = clamp_paging(page, page_size)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_items = (await db.execute(count_stmt)).scalar_one()
    total_pages = total_pages_for(total_items, page_size)
    page = min(page, total_pages)

    rows = await db.execute(
        stmt.order_by(*order_by).offset((page - 1) * page_size).limit(page_size)
    )
    return Page(
        items=list(rows.scalars().all()),
        page=page,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages
    )
