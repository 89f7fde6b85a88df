"""
Request-scoped engine context.

Every engine call receives the tenant explicitly instead of reading it from a
module-level cache. A new EngineContext is built for each request (or CLI
invocation); nothing derived from it outlives that call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import request

from .extensions import db
from .time_utils import utcnow
from .validation import NotFoundError, ValidationError


BUSINESS_HEADER = "X-Business-Id"


@dataclass(frozen=True)
class EngineContext:
    business_id: int
    requested_at: datetime = field(default_factory=utcnow)

    @property
    def cache_key(self) -> str:
        """Tenant-qualified key for anything a caller wants to memoize per request."""
        return f"business:{self.business_id}:{self.requested_at.isoformat()}"


def build_context(business_id: int) -> EngineContext:
    """Validate that the business exists and is active, then build a context."""
    from .models import Business

    business = db.session.get(Business, business_id)
    if business is None or not business.is_active:
        raise NotFoundError(f"Business {business_id} not found")
    return EngineContext(business_id=business.id)


def context_from_request() -> EngineContext:
    """
    Resolve the tenant for the current Flask request.

    Looks at the X-Business-Id header first, then a business_id query arg.
    """
    raw = request.headers.get(BUSINESS_HEADER) or request.args.get("business_id")
    if raw is None or not str(raw).strip():
        raise ValidationError(f"{BUSINESS_HEADER} header is required")
    try:
        business_id = int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{BUSINESS_HEADER} must be an integer")
    return build_context(business_id)
