import math

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from event_registry.core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def paginate(db: Session, stmt: Select, *, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE) -> dict:
    """Run an ORM select one page at a time, Laravel-style page metadata included."""
    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PAGE_SIZE)

    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    items = db.scalars(stmt.offset((page - 1) * per_page).limit(per_page)).all()

    return {
        "items": list(items),
        "total": int(total),
        "page": page,
        "per_page": per_page,
        "last_page": max(math.ceil(total / per_page), 1),
    }
