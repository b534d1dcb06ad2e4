"""Unauthenticated endpoints used by the hosted checkout."""
from __future__ import annotations

from aiohttp import web

from sbtc_gateway.api.utils import parse_body, read_json
from sbtc_gateway.domain.dto import CheckTransactionDTO
from sbtc_gateway.services.dependencies import get_reconciler

routes = web.RouteTableDef()


@routes.post("/api/v1/public/check-transaction")
async def check_transaction(request: web.Request):
    """Look for the settlement transfer of one payment intent on chain."""
    dto = parse_body(CheckTransactionDTO, await read_json(request))
    result = await get_reconciler(request).reconcile(dto.payment_intent_id)
    return web.json_response(result.to_dict())
