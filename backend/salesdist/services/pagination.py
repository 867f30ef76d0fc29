from __future__ import annotations

from flask import current_app


MAX_PER_PAGE = 100


def paginate(query, page: int | None = 1, per_page: int | None = None) -> dict:
    """Slice an ordered query into the {"items", "count", "pagination"} envelope."""
    per_page = min(per_page or current_app.config.get("DEFAULT_PAGE_SIZE", 15), MAX_PER_PAGE)
    per_page = max(per_page, 1)
    page = max(page or 1, 1)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [row.to_dict() for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
