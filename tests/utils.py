from __future__ import annotations

from uuid import UUID

from sbtc_gateway.chain.explorer import ExplorerTransaction
from sbtc_gateway.services.dependencies import MERCHANT_ID_HEADER
from sbtc_gateway.settings import SBTC_CONTRACTS

TESTNET_CONTRACT = SBTC_CONTRACTS["testnet"]
MERCHANT_ADDRESS = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
CUSTOMER_ADDRESS = "ST3AM1A56AK2C1XAFJ4115ZSV26EB49BVQ10MGCS0"


def make_headers(merchant_id: UUID) -> dict[str, str]:
    return {MERCHANT_ID_HEADER: str(merchant_id)}


def uint_hex(value: int) -> str:
    return "0x01" + value.to_bytes(16, "big").hex()


def memo_hex(memo: str | None) -> str:
    if memo is None:
        return "0x09"
    raw = memo.encode("utf-8")
    return "0x0a02" + len(raw).to_bytes(4, "big").hex() + raw.hex()


def transfer_tx(
    *,
    tx_id: str = "0xabc",
    amount: int = 50000,
    recipient: str = MERCHANT_ADDRESS,
    sender: str = CUSTOMER_ADDRESS,
    memo: str | None = None,
    contract_id: str = TESTNET_CONTRACT,
    function_name: str = "transfer",
    tx_status: str = "success",
) -> ExplorerTransaction:
    return ExplorerTransaction.model_validate(
        {
            "tx_id": tx_id,
            "tx_status": tx_status,
            "sender_address": sender,
            "tx_type": "contract_call",
            "contract_call": {
                "contract_id": contract_id,
                "function_name": function_name,
                "function_args": [
                    {"hex": uint_hex(amount), "repr": f"u{amount}", "name": "amount", "type": "uint"},
                    {"hex": "0x05", "repr": f"'{sender}", "name": "sender", "type": "principal"},
                    {"hex": "0x05", "repr": f"'{recipient}", "name": "recipient", "type": "principal"},
                    {"hex": memo_hex(memo), "repr": "none", "name": "memo", "type": "(optional (buff 34))"},
                ],
            },
        }
    )
