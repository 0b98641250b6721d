# ABOUTME: Pagination engine
# ABOUTME: Executes a query plan for one page and builds page metadata with replayable links

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from apiscope.services.query_compiler import QueryPlan
from apiscope.services.serializer import serialize_record


@dataclass
class PageResult:
    records: List[Dict[str, Any]]
    total: int
    total_pages: int
    page: int
    per_page: int
    offset: int
    out_of_bounds: bool
    previous_page: Optional[str] = None
    next_page: Optional[str] = None

    @property
    def last_page(self) -> bool:
        return self.next_page is None

    def meta(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "total_pages": self.total_pages,
            "last_page": self.last_page,
            "previous_page": self.previous_page,
            "next_page": self.next_page,
            "out_of_bounds": self.out_of_bounds,
            "offset": self.offset,
            "page": self.page,
            "per_page": self.per_page,
        }


def page_url(url: str, page: int) -> str:
    """
    Rewrite the page parameter of a URL.

    Every other query parameter is kept byte-for-byte and in order.
    """
    parts = urlsplit(url)
    params = [param for param in parts.query.split("&") if param]

    rewritten = []
    replaced = False
    for param in params:
        if unquote_plus(param.split("=", 1)[0]) == "page":
            if not replaced:
                rewritten.append(f"page={page}")
                replaced = True
            continue
        rewritten.append(param)
    if not replaced:
        rewritten.append(f"page={page}")

    return urlunsplit(parts._replace(query="&".join(rewritten)))


def _as_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def parse_page(raw: Any) -> int:
    """Read the page parameter. Missing, non-numeric or non-positive values mean page 1."""
    page = _as_int(raw)
    if page is None:
        return 1
    return max(page, 1)


def clamp_per_page(per_page: Any, default: int, maximum: int) -> int:
    per_page = _as_int(per_page)
    if per_page is None:
        return default
    return max(1, min(per_page, maximum))


def paginate(db: Session, plan: QueryPlan, page: int, per_page: int, url: str) -> PageResult:
    """
    Execute plan for a 1-indexed page.

    Counts run against the scoped, filtered statement. Pages past the end
    return no records and out_of_bounds=True.
    """
    page = max(page, 1)
    offset = (page - 1) * per_page

    total = db.execute(plan.count_statement()).scalar_one()
    total_pages = math.ceil(total / per_page)
    out_of_bounds = page > total_pages

    records = []
    if not out_of_bounds:
        rows = db.execute(plan.statement().offset(offset).limit(per_page)).scalars().all()
        records = [serialize_record(row, plan.projection) for row in rows]

    return PageResult(
        records=records,
        total=total,
        total_pages=total_pages,
        page=page,
        per_page=per_page,
        offset=offset,
        out_of_bounds=out_of_bounds,
        previous_page=page_url(url, page - 1) if page > 1 else None,
        next_page=page_url(url, page + 1) if page < total_pages else None,
    )
