import json

import httpx
import pytest

from predictionjack.chain.errors import SubmitError, UserRejected
from predictionjack.chain.wallet import RpcWallet

from conftest import ACCOUNT


def wallet_with(responses: dict, seen: list | None = None) -> RpcWallet:
    """RpcWallet whose JSON-RPC endpoint answers from ``responses`` by method."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        reply = responses[body["method"]]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **reply})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RpcWallet("http://wallet.local", ACCOUNT, 8453, client=client)


@pytest.mark.asyncio
async def test_atomic_capability_per_chain():
    seen = []
    wallet = wallet_with({
        "wallet_getCapabilities": {"result": {"0x2105": {"atomicBatch": {"supported": True}}}},
    }, seen)
    assert await wallet.supports_atomic_batch()
    assert await wallet.supports_atomic_batch()
    assert len(seen) == 1
    await wallet.close()


@pytest.mark.asyncio
async def test_capability_missing_means_sequential():
    wallet = wallet_with({
        "wallet_getCapabilities": {"error": {"code": -32601, "message": "Method not found"}},
    })
    assert not await wallet.supports_atomic_batch()
    await wallet.close()


@pytest.mark.asyncio
async def test_user_rejection_code():
    wallet = wallet_with({
        "eth_sendTransaction": {"error": {"code": 4001, "message": "User denied transaction signature"}},
    })
    with pytest.raises(UserRejected):
        await wallet.send_transaction({"to": "0x3", "data": "0x", "value": 0})
    await wallet.close()


@pytest.mark.asyncio
async def test_other_wallet_error():
    wallet = wallet_with({
        "eth_sendTransaction": {"error": {"code": -32000, "message": "insufficient funds for gas"}},
    })
    with pytest.raises(SubmitError) as info:
        await wallet.send_transaction({"to": "0x3", "data": "0x", "value": 0})
    assert not isinstance(info.value, UserRejected)
    assert "insufficient funds" in info.value.reason
    await wallet.close()


@pytest.mark.asyncio
async def test_send_calls_payload():
    seen = []
    wallet = wallet_with({"wallet_sendCalls": {"result": {"id": "batch-9"}}}, seen)

    batch_id = await wallet.send_calls([
        {"to": "0x1", "data": "0xaa", "value": 0},
        {"to": "0x2", "data": "0xbb", "value": 16},
    ])

    assert batch_id == "batch-9"
    params = seen[0]["params"][0]
    assert params["chainId"] == "0x2105"
    assert params["from"] == ACCOUNT
    assert [c["value"] for c in params["calls"]] == ["0x0", "0x10"]
    await wallet.close()


@pytest.mark.asyncio
async def test_calls_status_numeric_code():
    wallet = wallet_with({
        "wallet_getCallsStatus": {"result": {
            "status": 200,
            "receipts": [{"transactionHash": "0xabc", "status": "0x1", "blockNumber": "0x64"}],
        }},
    })
    status = await wallet.get_calls_status("batch-9")
    assert status.status == "success"
    assert status.receipts[0].block_number == 100
    assert status.receipts[0].succeeded
    await wallet.close()


@pytest.mark.asyncio
async def test_calls_status_legacy_strings():
    wallet = wallet_with({"wallet_getCallsStatus": {"result": {"status": "PENDING"}}})
    assert (await wallet.get_calls_status("b")).status == "pending"
    await wallet.close()


@pytest.mark.asyncio
async def test_unreachable_wallet():
    def handler(request):
        return httpx.Response(502)

    wallet = RpcWallet("http://wallet.local", ACCOUNT, 8453,
                       client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(SubmitError):
        await wallet.send_transaction({"to": "0x3"})
    await wallet.close()


@pytest.mark.asyncio
async def test_non_json_wallet_reply():
    def handler(request):
        return httpx.Response(200, text="<html>bad gateway</html>")

    wallet = RpcWallet("http://wallet.local", ACCOUNT, 8453,
                       client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(SubmitError) as info:
        await wallet.send_transaction({"to": "0x3"})
    assert "malformed" in info.value.reason
    await wallet.close()
