"""
Helpers shared by the ledger services: ownership checks, payload
coercion and best-effort cache access.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from moneymoo.cache import MISS, TTLCache, owner_tag
from moneymoo.exceptions import NotFoundError
from moneymoo.models.ledger import FieldError
from moneymoo.models.money import AmountParseError, parse_amount

logger = structlog.get_logger(__name__)


def require_owned(entity: Any, owner_id: str, label: str, entity_id: Any) -> Any:
    """Return entity if it exists and belongs to owner_id, else NotFoundError."""
    if entity is None or entity.owner_id != owner_id:
        raise NotFoundError(f"{label} not found: {entity_id}", entity_id=entity_id)
    return entity


def coerce_amount(
    payload: Mapping[str, Any],
    field: str,
    thousands_separator: str,
    decimal_separator: str,
    errors: list[FieldError],
) -> Optional[Decimal]:
    """
    Parse payload[field] as an amount.

    Returns None when the field is empty (left to the required rule) or
    unparseable (a type error is appended to `errors`).
    """
    raw = payload.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        return parse_amount(raw, thousands_separator, decimal_separator)
    except AmountParseError as e:
        errors.append(FieldError(
            field=field,
            code="type",
            message=f"Amount could not be read: {e.reason}",
        ))
        return None


def coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def coerce_uuid(
    payload: Mapping[str, Any],
    field: str,
    errors: list[FieldError],
) -> Optional[UUID]:
    value = payload.get(field)
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        errors.append(FieldError(
            field=field,
            code="type",
            message=f"{field} is not a valid id",
        ))
        return None


def invalidate_owner(
    cache: Optional[TTLCache],
    owner_id: str,
    namespaces: Iterable[str],
) -> None:
    """Drop the owner's cached reads. Failures are logged, never raised."""
    if cache is None:
        return
    try:
        cache.invalidate_tags(owner_tag(ns, owner_id) for ns in namespaces)
    except Exception as e:
        logger.warning("cache_invalidation_failed", owner_id=owner_id, error=str(e))


async def read_through(
    cache: Optional[TTLCache],
    key: str,
    ttl: float,
    tags: Iterable[str],
    loader: Callable[[], Awaitable[Any]],
) -> Any:
    """Serve `key` from cache, or load it and populate the cache."""
    if cache is None:
        return await loader()

    try:
        hit = cache.get(key)
    except Exception as e:
        logger.warning("cache_read_failed", key=key, error=str(e))
        hit = MISS

    if hit is not MISS:
        return hit.model_copy(deep=True) if isinstance(hit, BaseModel) else hit

    value = await loader()
    try:
        stored = value.model_copy(deep=True) if isinstance(value, BaseModel) else value
        cache.set(key, stored, ttl=ttl, tags=tuple(tags))
    except Exception as e:
        logger.warning("cache_write_failed", key=key, error=str(e))
    return value
