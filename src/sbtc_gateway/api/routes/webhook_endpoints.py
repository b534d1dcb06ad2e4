"""Webhook endpoint management."""
from __future__ import annotations

from aiohttp import web

from sbtc_gateway.api.utils import parse_body, read_json
from sbtc_gateway.domain.dto import WebhookEndpointCreateDTO, WebhookEndpointUpdateDTO
from sbtc_gateway.services.dependencies import get_webhook_service, require_merchant

routes = web.RouteTableDef()


@routes.get("/api/v1/webhook-endpoints")
async def list_webhook_endpoints(request: web.Request):
    merchant_id = require_merchant(request)
    endpoints = await get_webhook_service(request).list_endpoints(merchant_id)
    return web.json_response({"data": [endpoint.to_public() for endpoint in endpoints]})


@routes.post("/api/v1/webhook-endpoints")
async def create_webhook_endpoint(request: web.Request):
    merchant_id = require_merchant(request)
    dto = parse_body(WebhookEndpointCreateDTO, await read_json(request))
    endpoint = await get_webhook_service(request).create_endpoint(merchant_id, dto)
    # the secret is only ever returned here
    return web.json_response(endpoint.to_public(include_secret=True), status=201)


@routes.get("/api/v1/webhook-endpoints/{endpoint_id}")
async def get_webhook_endpoint(request: web.Request):
    merchant_id = require_merchant(request)
    endpoint = await get_webhook_service(request).get_endpoint(
        merchant_id, request.match_info["endpoint_id"]
    )
    return web.json_response(endpoint.to_public())


@routes.patch("/api/v1/webhook-endpoints/{endpoint_id}")
async def update_webhook_endpoint(request: web.Request):
    merchant_id = require_merchant(request)
    dto = parse_body(WebhookEndpointUpdateDTO, await read_json(request))
    endpoint = await get_webhook_service(request).update_endpoint(
        merchant_id, request.match_info["endpoint_id"], dto
    )
    return web.json_response(endpoint.to_public())


@routes.delete("/api/v1/webhook-endpoints/{endpoint_id}")
async def delete_webhook_endpoint(request: web.Request):
    merchant_id = require_merchant(request)
    await get_webhook_service(request).delete_endpoint(
        merchant_id, request.match_info["endpoint_id"]
    )
    return web.Response(status=204)


@routes.post("/api/v1/webhook-endpoints/{endpoint_id}/test")
async def send_test_webhook(request: web.Request):
    merchant_id = require_merchant(request)
    service = get_webhook_service(request)
    event = await service.send_test_event(merchant_id, request.match_info["endpoint_id"])
    return web.json_response(
        {"message": "Test webhook queued", "event": event.to_public(service.max_attempts)},
        status=202,
    )
