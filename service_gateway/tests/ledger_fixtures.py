"""
Builders for raw program accounts and JSON-RPC replies used by ledger tests.
"""

import base64
import json
import struct
from typing import Any, Callable, Dict, List, Optional

import httpx
from solders.pubkey import Pubkey

from service_gateway.app.ledger.layouts import ACCESS_KEY_DISCRIMINATOR, API_REGISTRY_DISCRIMINATOR


def _string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def encode_api_registry(owner: str, name: str, backend_url: str, rate_limit: int, price_per_call: int,
                        total_calls: int = 0, total_earnings: int = 0, paused: bool = False,
                        bump: int = 255) -> bytes:
    return (
        API_REGISTRY_DISCRIMINATOR
        + bytes(Pubkey.from_string(owner))
        + _string(name)
        + _string(backend_url)
        + struct.pack("<IQQQ", rate_limit, price_per_call, total_calls, total_earnings)
        + struct.pack("<BB", int(paused), bump)
    )


def encode_access_key(api_id: str, holder: str, calls_remaining: int, active: bool = True,
                      bump: int = 255) -> bytes:
    return (
        ACCESS_KEY_DISCRIMINATOR
        + bytes(Pubkey.from_string(api_id))
        + bytes(Pubkey.from_string(holder))
        + struct.pack("<IBB", calls_remaining, int(active), bump)
    )


def account_value(owner: str, data: bytes) -> Dict[str, Any]:
    return {
        "data": [base64.b64encode(data).decode("ascii"), "base64"],
        "executable": False,
        "lamports": 1_000_000,
        "owner": owner,
        "rentEpoch": 0,
    }


def rpc_result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def account_info_result(request_id: Any, value: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return rpc_result(request_id, {"context": {"slot": 1}, "value": value})


class FakeCluster:
    """Answers Solana JSON-RPC requests from a dict of accounts.

    Use ``handler`` as an ``httpx.MockTransport`` handler. Setting
    ``fail_with`` to a callable replaces every reply.
    """

    def __init__(self):
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.requests: List[Dict[str, Any]] = []
        self.fail_with: Optional[Callable[[Dict[str, Any]], httpx.Response]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.fail_with is not None:
            return self.fail_with(body)

        method = body["method"]
        if method == "getAccountInfo":
            return httpx.Response(200, json=account_info_result(body["id"], self.accounts.get(body["params"][0])))
        if method == "getProgramAccounts":
            entries = [{"pubkey": address, "account": value} for address, value in self.accounts.items()]
            return httpx.Response(200, json=rpc_result(body["id"], entries))
        if method == "getHealth":
            return httpx.Response(200, json=rpc_result(body["id"], "ok"))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"],
                                         "error": {"code": -32601, "message": "Method not found"}})
