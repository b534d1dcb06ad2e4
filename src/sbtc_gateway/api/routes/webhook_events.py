"""Operator view of webhook events and manual retry."""
from __future__ import annotations

from aiohttp import web

from sbtc_gateway.api.utils import paginated_response, pagination_params, parse_bool
from sbtc_gateway.services.dependencies import get_webhook_service, require_merchant

routes = web.RouteTableDef()


@routes.get("/api/v1/webhook-events")
async def list_webhook_events(request: web.Request):
    merchant_id = require_merchant(request)
    service = get_webhook_service(request)
    limit, offset = pagination_params(request)
    query = request.rel_url.query
    items, total = await service.list_events(
        merchant_id,
        event_type=query.get("type") or None,
        endpoint_id=query.get("endpoint_id") or None,
        delivered=parse_bool(query.get("delivered"), "delivered"),
        limit=limit,
        offset=offset,
    )
    payload = paginated_response(
        [item.to_public(service.max_attempts) for item in items],
        limit=limit,
        offset=offset,
        key="data",
        total=total,
    )
    return web.json_response(payload)


@routes.get("/api/v1/webhook-events/{event_id}")
async def get_webhook_event(request: web.Request):
    merchant_id = require_merchant(request)
    service = get_webhook_service(request)
    event = await service.get_event(merchant_id, request.match_info["event_id"])
    return web.json_response(event.to_public(service.max_attempts))


@routes.post("/api/v1/webhook-events/{event_id}/retry")
async def retry_webhook_event(request: web.Request):
    merchant_id = require_merchant(request)
    service = get_webhook_service(request)
    event = await service.retry_event(merchant_id, request.match_info["event_id"])
    return web.json_response(
        {"message": "Webhook retry scheduled", "event": event.to_public(service.max_attempts)},
        status=202,
    )
