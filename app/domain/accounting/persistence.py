"""Shared query and commit helpers for the accounting services."""

import logging
import math
from typing import Any, Dict, Iterable, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import get_settings
from app.domain.accounting.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def commit_or_conflict(db: Session, what: str) -> None:
    """
    Commit the current unit of work.

    A stale version counter or a violated unique/foreign key means another
    caller changed the same rows first; the unit is rolled back and the
    loser gets a retryable ConflictError.
    """
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        logger.warning(f"Conflict while committing {what}: {e}")
        raise ConflictError(f"Concurrent update conflict on {what}; re-read and retry", operation=what)


def flush_or_conflict(db: Session, what: str) -> None:
    """Flush pending changes, translating integrity and version errors."""
    try:
        db.flush()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        logger.warning(f"Conflict while flushing {what}: {e}")
        raise ConflictError(f"Concurrent update conflict on {what}; re-read and retry", operation=what)


def bounded_text(value: Any, field: str, max_length: int, required: bool = False) -> str | None:
    """
    Strip a text value and check it fits its column.

    Raises:
        ValidationError: If required and blank, or longer than max_length
    """
    cleaned = str(value).strip() if value is not None else ""
    if not cleaned:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if len(cleaned) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters, got {len(cleaned)}",
            field=field,
        )
    return cleaned


def apply_sort(
    query: Query,
    model: Any,
    sort: str | None,
    order: str | None,
    allowed: Iterable[str],
    default: str,
) -> Query:
    """Order a query by a whitelisted column name."""
    allowed = set(allowed)
    column_name = sort or default
    if column_name not in allowed:
        raise ValidationError(
            f"Cannot sort by '{column_name}'. Allowed: {sorted(allowed)}",
            field="sort",
        )
    if order not in (None, "asc", "desc"):
        raise ValidationError(f"Order must be 'asc' or 'desc', got '{order}'", field="order")
    column = getattr(model, column_name)
    return query.order_by(column.desc() if order == "desc" else column.asc())


def paginate(query: Query, page: int | None, limit: int | None) -> Tuple[List[Any], Dict[str, int]]:
    """
    Slice a query into a page.

    Returns:
        (items, pagination) where pagination is {page, limit, total, total_pages}
    """
    settings = get_settings()
    page = page if page and page > 0 else 1
    limit = settings.clamp_page_size(limit)

    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()

    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
