"""Auth and company-access helpers for the declarations service.

The session carries the signed-in user's email (``user_email``), the accessible
company IDs (``companies``) and the selected company (``active_company_id``).
API routes answer with plain-text 401/403 responses instead of redirects.
"""

from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import Response, request, session

from logger import logger

USER_EMAIL_KEY = "user_email"
ACTIVE_COMPANY_KEY = "active_company_id"
COMPANIES_KEY = "companies"


def get_user_email() -> str | None:
    """Return the signed-in user's email, or None when anonymous."""
    email = session.get(USER_EMAIL_KEY)
    return email if isinstance(email, str) and email.strip() else None


def get_accessible_company_ids() -> list[str]:
    """Company IDs the session user belongs to, in session order."""
    companies = session.get(COMPANIES_KEY) or []
    if isinstance(companies, str):
        companies = [companies]
    return [str(company_id) for company_id in companies if company_id]


def get_active_company_id() -> str | None:
    """Return the active company when the user still has access to it.

    Falls back to the first accessible company when no company was selected or the
    selected one is no longer accessible.
    """
    accessible = get_accessible_company_ids()
    active = session.get(ACTIVE_COMPANY_KEY)
    if active and active in accessible:
        return active
    if active:
        logger.info("Active company is no longer accessible", company_id=active)
    return accessible[0] if accessible else None


def parse_company_ids(values: Iterable[str]) -> list[str]:
    """Flatten repeated and comma-separated ``companyIds`` values."""
    ids: list[str] = []
    for value in values:
        ids.extend(part.strip() for part in str(value or "").split(",") if part.strip())
    return ids


def filter_allowed_company_ids(company_ids: Iterable[str]) -> list[str]:
    """Keep only the requested companies the session user can access."""
    accessible = set(get_accessible_company_ids())
    allowed = [company_id for company_id in dict.fromkeys(company_ids) if company_id in accessible]
    if not allowed:
        logger.info("Requested companies are not accessible", requested=list(company_ids))
    return allowed


def login_required(f: Callable[..., Any]) -> Callable[..., Any]:
    """Respond 401 when no user is signed in.

    Args:
        f: Route handler to wrap.

    Returns:
        Wrapped route handler.
    """

    @wraps(f)
    def decorated_function(*args: Any, **kwargs: Any) -> Any:
        if get_user_email() is None:
            logger.info("Unauthenticated API request", route=request.path)
            return Response("Unauthorized", status=401, mimetype="text/plain")
        return f(*args, **kwargs)

    return decorated_function


def active_company_required(f: Callable[..., Any]) -> Callable[..., Any]:
    """Respond 403 when the session user has no accessible active company."""

    @wraps(f)
    def decorated_function(*args: Any, **kwargs: Any) -> Any:
        if get_active_company_id() is None:
            logger.info("No active company for request", route=request.path, user_email=get_user_email())
            return Response("No active company", status=403, mimetype="text/plain")
        return f(*args, **kwargs)

    return decorated_function


def route_handler_logging(function: Callable[..., Any]) -> Callable[..., Any]:
    """Log entry into route handlers as an audit trail entry."""

    @wraps(function)
    def decorator(*args: Any, **kwargs: Any) -> Any:
        logger.info("Entering route", route=request.path, event_type="USER_TRAIL", path=request.path, company_id=session.get(ACTIVE_COMPANY_KEY))

        return function(*args, **kwargs)

    return decorator
