"""Payment intent endpoints."""
from __future__ import annotations

from aiohttp import web

from sbtc_gateway.api.utils import parse_body, read_json
from sbtc_gateway.domain.dto import (
    PaymentIntentConfirmDTO,
    PaymentIntentCreateDTO,
    PaymentIntentMetadataDTO,
    PaymentIntentSettleDTO,
)
from sbtc_gateway.services.dependencies import get_payment_intent_service, require_merchant

routes = web.RouteTableDef()


@routes.post("/api/v1/payment_intents")
async def create_payment_intent(request: web.Request):
    merchant_id = require_merchant(request)
    dto = parse_body(PaymentIntentCreateDTO, await read_json(request))
    intent = await get_payment_intent_service(request).create_intent(merchant_id, dto)
    return web.json_response(intent.to_payload(), status=201)


@routes.get("/api/v1/payment_intents/{intent_id}")
async def get_payment_intent(request: web.Request):
    merchant_id = require_merchant(request)
    service = get_payment_intent_service(request)
    intent = await service.get_intent(request.match_info["intent_id"], merchant_id)
    return web.json_response(intent.to_payload())


@routes.post("/api/v1/payment_intents/{intent_id}")
async def update_payment_intent(request: web.Request):
    merchant_id = require_merchant(request)
    dto = parse_body(PaymentIntentMetadataDTO, await read_json(request))
    service = get_payment_intent_service(request)
    intent = await service.update_metadata(
        request.match_info["intent_id"], dto.metadata, merchant_id
    )
    return web.json_response(intent.to_payload())


@routes.post("/api/v1/payment_intents/{intent_id}/confirm")
async def confirm_payment_intent(request: web.Request):
    merchant_id = require_merchant(request)
    dto = parse_body(PaymentIntentConfirmDTO, await read_json(request, allow_empty=True))
    intent = await get_payment_intent_service(request).confirm(
        request.match_info["intent_id"],
        customer_address=dto.customer_address,
        merchant_id=merchant_id,
    )
    return web.json_response(intent.to_payload())


@routes.post("/api/v1/payment_intents/{intent_id}/webhook_notify")
async def notify_payment_intent_settled(request: web.Request):
    merchant_id = require_merchant(request)
    dto = parse_body(PaymentIntentSettleDTO, await read_json(request))
    intent = await get_payment_intent_service(request).settle(
        request.match_info["intent_id"],
        tx_id=dto.tx_id,
        customer_address=dto.customer_address,
        merchant_id=merchant_id,
    )
    return web.json_response(intent.to_payload())


@routes.post("/api/v1/payment_intents/{intent_id}/cancel")
async def cancel_payment_intent(request: web.Request):
    merchant_id = require_merchant(request)
    intent = await get_payment_intent_service(request).cancel(
        request.match_info["intent_id"], merchant_id=merchant_id
    )
    return web.json_response(intent.to_payload())


@routes.post("/api/v1/payment_intents/{intent_id}/simulate_success")
async def simulate_success(request: web.Request):
    merchant_id = require_merchant(request)
    intent = await get_payment_intent_service(request).simulate_success(
        request.match_info["intent_id"], merchant_id=merchant_id
    )
    return web.json_response(intent.to_payload())


@routes.post("/api/v1/payment_intents/{intent_id}/simulate_failure")
async def simulate_failure(request: web.Request):
    merchant_id = require_merchant(request)
    intent = await get_payment_intent_service(request).simulate_failure(
        request.match_info["intent_id"], merchant_id=merchant_id
    )
    return web.json_response(intent.to_payload())
