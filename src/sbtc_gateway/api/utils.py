"""Helper utilities for API handlers."""
from __future__ import annotations

from typing import Any, Type, TypeVar

from aiohttp import web
from pydantic import BaseModel, ValidationError

TModel = TypeVar("TModel", bound=BaseModel)


async def read_json(request: web.Request, *, allow_empty: bool = False) -> dict[str, Any]:
    """Parse a JSON object body, raising HTTPBadRequest on invalid input."""
    if allow_empty and not request.body_exists:
        return {}
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def parse_body(model: Type[TModel], body: dict[str, Any]) -> TModel:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json(), content_type="application/json") from exc


def parse_bool(value: str | None, label: str) -> bool | None:
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    raise web.HTTPBadRequest(text=f"Invalid {label}")


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    return {
        key: items,
        "total": total,
        "has_more": offset + len(items) < total,
        "limit": limit,
        "offset": offset,
    }
