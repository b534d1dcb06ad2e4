"""Block explorer (Hiro Stacks API) client."""
from __future__ import annotations

import asyncio
import time
from typing import Any, List, Protocol

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sbtc_gateway.chain.clarity import (
    TransferCall,
    decode_memo,
    decode_principal_repr,
    decode_uint,
    decode_uint_repr,
)
from sbtc_gateway.core.exceptions import ExplorerError
from sbtc_gateway.otel import get_tracer

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 50
TRANSFER_FUNCTION = "transfer"
TX_STATUS_SUCCESS = "success"


class FunctionArg(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hex: str = ""
    repr: str = ""
    name: str | None = None
    type: str | None = None


class ContractCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contract_id: str
    function_name: str
    function_args: List[FunctionArg] = Field(default_factory=list)


class ExplorerTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tx_id: str
    tx_status: str
    sender_address: str | None = None
    block_height: int | None = None
    contract_call: ContractCall | None = None

    def is_settlement_transfer(self, contract_id: str) -> bool:
        call = self.contract_call
        return (
            self.tx_status == TX_STATUS_SUCCESS
            and call is not None
            and call.function_name == TRANSFER_FUNCTION
            and call.contract_id == contract_id
        )

    def as_transfer(self) -> TransferCall | None:
        """Decode ``transfer(amount, sender, recipient, memo)`` arguments.

        Returns None when the arguments are missing or undecodable.
        """
        if self.contract_call is None:
            return None
        args = self.contract_call.function_args
        if len(args) < 4:
            return None
        amount_arg, sender_arg, recipient_arg, memo_arg = args[:4]
        try:
            amount = (
                decode_uint(amount_arg.hex) if amount_arg.hex else decode_uint_repr(amount_arg.repr)
            )
            memo = decode_memo(memo_arg.hex)
        except ValueError as exc:
            logger.debug("explorer: undecodable transfer", tx_id=self.tx_id, error=str(exc))
            return None
        return TransferCall(
            tx_id=self.tx_id,
            amount=amount,
            sender=decode_principal_repr(sender_arg.repr),
            recipient=decode_principal_repr(recipient_arg.repr),
            memo=memo,
        )


class BlockExplorer(Protocol):
    async def list_address_transactions(
        self, address: str, *, limit: int
    ) -> List[ExplorerTransaction]: ...


class HiroExplorerClient:
    """Reads recent address transactions from the Hiro API.

    Requests are spaced at least ``min_interval_seconds`` apart and page size
    is capped, since the API is rate limited.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        min_interval_seconds: float = 0.5,
    ):
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = ClientTimeout(total=timeout_seconds)
        self._min_interval = min_interval_seconds
        self._lock = asyncio.Lock()
        self._last_request_at = 0.0

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-hiro-api-key"] = self._api_key
        return headers

    async def _throttle(self) -> None:
        async with self._lock:
            wait = self._last_request_at + self._min_interval - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request_at = time.monotonic()

    async def list_address_transactions(
        self, address: str, *, limit: int = 20
    ) -> List[ExplorerTransaction]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        url = f"{self._base_url}/extended/v2/addresses/{address}/transactions"
        await self._throttle()
        with get_tracer(__name__).start_as_current_span("explorer.list_address_transactions"):
            try:
                async with self._session.get(
                    url,
                    params={"limit": str(limit)},
                    headers=self._headers(),
                    timeout=self._timeout,
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise ExplorerError(
                            f"Explorer returned HTTP {resp.status}: {text[:200]}"
                        )
                    data: Any = await resp.json(content_type=None)
            except (ClientError, asyncio.TimeoutError) as exc:
                raise ExplorerError(f"Explorer request failed: {exc!r}") from exc

        results = data.get("results", []) if isinstance(data, dict) else []
        transactions: List[ExplorerTransaction] = []
        for item in results:
            # v2 wraps each transaction as {"tx": {...}, ...}
            raw_tx = item.get("tx", item) if isinstance(item, dict) else None
            if not isinstance(raw_tx, dict):
                continue
            try:
                transactions.append(ExplorerTransaction.model_validate(raw_tx))
            except ValidationError:
                logger.debug("explorer: skipping malformed transaction", address=address)
        return transactions
