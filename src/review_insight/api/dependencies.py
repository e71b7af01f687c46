"""FastAPI dependency injection providers.

Provides reusable dependencies for authentication and pagination.  All
auth dependencies delegate to FastAPI-Users via the ``fastapi_users``
instance defined in ``api/routes/auth.py``.

Dependency hierarchy::

    get_optional_user         returns None if unauthenticated
    get_current_user          requires any valid JWT (cookie or bearer)
    get_current_active_user   additionally requires is_active=True

Note on import order:
    This module imports from ``api.routes.auth`` at the function level to
    avoid a circular import.  The chain is ``auth.py`` → ``user_manager.py``
    → ``database.py``, with no back-edge to ``dependencies.py``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Query, status

from review_insight.core.models.users import User

# ---------------------------------------------------------------------------
# Internal helpers that resolve the FastAPIUsers instance at call time
# ---------------------------------------------------------------------------


def _current_user_dep(*, active: bool, optional: bool):  # type: ignore[return]
    """Return a FastAPI-Users ``current_user`` callable dependency.

    Args:
        active: If ``True``, reject inactive users with HTTP 403.
        optional: If ``True``, return ``None`` instead of raising 401.
    """
    from review_insight.api.routes.auth import fastapi_users  # noqa: PLC0415

    return fastapi_users.current_user(active=active, optional=optional)


# ---------------------------------------------------------------------------
# Core auth dependencies
# ---------------------------------------------------------------------------


async def get_current_user(
    user: Annotated[User, Depends(_current_user_dep(active=False, optional=False))],
) -> User:
    """Require a valid JWT (cookie or bearer); user need not be active."""
    return user


async def get_current_active_user(
    user: Annotated[User, Depends(_current_user_dep(active=True, optional=False))],
) -> User:
    """Require a valid JWT and ``is_active=True``.

    Raises:
        HTTPException 401: If no valid JWT is present.
        HTTPException 403: If the user account is not active.
    """
    return user


async def get_optional_user(
    user: Annotated[
        Optional[User],
        Depends(_current_user_dep(active=True, optional=True)),
    ],
) -> Optional[User]:
    """Return the current active user, or ``None`` for guests.

    Used by ``POST /api/analyze``, which serves both signed-in users and
    anonymous visitors.
    """
    return user


# ---------------------------------------------------------------------------
# Pagination parameters
# ---------------------------------------------------------------------------


@dataclass
class PaginationParams:
    """Page-number pagination shared by list endpoints.

    Attributes:
        page: 1-based page number.
        limit: Items per page (1-100).
    """

    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def get_pagination(
    page: int = Query(default=1),
    limit: int = Query(default=20),
) -> PaginationParams:
    """Parse and validate ``page`` / ``limit`` query parameters.

    Raises:
        HTTPException 422: If either value is out of range.
    """
    if page < 1:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="page must be 1 or greater.",
        )
    if not 1 <= limit <= 100:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="limit must be between 1 and 100.",
        )
    return PaginationParams(page=page, limit=limit)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

LIKE_ESCAPE = "\\"


def contains_pattern(text: str) -> str:
    """``ILIKE`` pattern matching *text* anywhere, with wildcards escaped.

    Use together with ``escape=LIKE_ESCAPE`` so ``%`` and ``_`` typed by a
    user match literally.
    """
    escaped = (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"
