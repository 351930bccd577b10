"""
JSON-RPC Adapter Tests
======================
Transport retries and response mapping, with ``urlopen`` mocked out.
"""

import base64
import io
import json
import urllib.error
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from reclaimer import rpc
from reclaimer.builder import build_close_account_ix
from reclaimer.config import ReclaimConfig
from reclaimer.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from reclaimer.errors import RpcError
from reclaimer.models import ConfirmationStatus, TokenProgram
from reclaimer.rpc import SolanaRpc, rpc_call
from reclaimer.signer import KeypairSigner


def _response(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode("utf-8")
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://node", code, "err", {}, io.BytesIO(b"body"))


class TestRpcCall:

    def test_returns_payload(self):
        with patch.object(rpc.urllib.request, "urlopen", return_value=_response({"result": 7})) as urlopen:
            assert rpc_call("http://node", "getBalance", ["x"]) == {"result": 7}
        body = json.loads(urlopen.call_args[0][0].data)
        assert body["method"] == "getBalance"
        assert body["params"] == ["x"]

    def test_json_rpc_error_not_retried(self):
        with patch.object(
            rpc.urllib.request, "urlopen", return_value=_response({"error": {"code": -32602, "message": "bad"}})
        ) as urlopen:
            with pytest.raises(RpcError) as info:
                rpc_call("http://node", "getBalance", ["x"])
        assert urlopen.call_count == 1
        assert info.value.payload == {"code": -32602, "message": "bad"}

    def test_rate_limit_backs_off_then_succeeds(self):
        side_effect = [_http_error(429), _response({"result": 1})]
        with patch.object(rpc.urllib.request, "urlopen", side_effect=side_effect), patch.object(rpc.time, "sleep") as sleep:
            assert rpc_call("http://node", "getSlot", []) == {"result": 1}
        sleep.assert_called_once_with(2)

    def test_http_error_raises(self):
        with patch.object(rpc.urllib.request, "urlopen", side_effect=_http_error(500)):
            with pytest.raises(RpcError):
                rpc_call("http://node", "getSlot", [])

    def test_gives_up_after_retries(self):
        with patch.object(rpc.urllib.request, "urlopen", side_effect=urllib.error.URLError("down")), patch.object(
            rpc.time, "sleep"
        ):
            with pytest.raises(RpcError):
                rpc_call("http://node", "getSlot", [], max_retries=3)


class TestSolanaRpc:

    @pytest.fixture
    def client(self):
        return SolanaRpc(ReclaimConfig(rpc_url="http://node", confirm_poll_s=0))

    @pytest.mark.asyncio
    async def test_get_balances_maps_missing_accounts(self, client):
        a, b = Pubkey.new_unique(), Pubkey.new_unique()
        client.call = AsyncMock(return_value={"result": {"value": [{"lamports": 2039280}, None]}})

        assert await client.get_balances([a, b]) == [2039280, None]

    @pytest.mark.asyncio
    async def test_blockhash_window(self, client):
        bh = Hash.new_unique()
        client.call = AsyncMock(
            return_value={"result": {"value": {"blockhash": str(bh), "lastValidBlockHeight": 321}}}
        )

        window = await client.get_latest_blockhash_window()

        assert window.blockhash == bh
        assert window.last_valid_block_height == 321

    @pytest.mark.asyncio
    async def test_confirmation_ok(self, client):
        client.call = AsyncMock(
            side_effect=[
                {"result": {"value": [{"err": None, "confirmationStatus": "processed"}]}},
                {"result": {"value": [{"err": None, "confirmationStatus": "confirmed"}]}},
            ]
        )
        result = await client.await_confirmation("sig", 100)
        assert result.status is ConfirmationStatus.OK

    @pytest.mark.asyncio
    async def test_confirmation_error(self, client):
        client.call = AsyncMock(
            return_value={"result": {"value": [{"err": {"InstructionError": [0, "Custom"]}, "confirmationStatus": "confirmed"}]}}
        )
        result = await client.await_confirmation("sig", 100)
        assert result.status is ConfirmationStatus.ERROR
        assert result.error == {"InstructionError": [0, "Custom"]}

    @pytest.mark.asyncio
    async def test_confirmation_expires_past_block_height(self, client):
        client.call = AsyncMock(
            side_effect=[
                {"result": {"value": [None]}},
                {"result": 99},
                {"result": {"value": [None]}},
                {"result": 101},
            ]
        )
        result = await client.await_confirmation("sig", 100)
        assert result.status is ConfirmationStatus.EXPIRED
        assert client.call.await_count == 4

    @pytest.mark.asyncio
    async def test_failed_status_poll_keeps_waiting(self, client):
        client.call = AsyncMock(
            side_effect=[
                RpcError("getSignatureStatuses failed after 8 attempts", method="getSignatureStatuses"),
                {"result": {"value": [{"err": None, "confirmationStatus": "confirmed"}]}},
            ]
        )
        result = await client.await_confirmation("sig", 100)
        assert result.status is ConfirmationStatus.OK
        assert client.call.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_block_height_poll_keeps_waiting(self, client):
        client.call = AsyncMock(
            side_effect=[
                {"result": {"value": [None]}},
                RpcError("getBlockHeight failed", method="getBlockHeight"),
                {"result": {"value": [{"err": None, "confirmationStatus": "finalized"}]}},
            ]
        )
        result = await client.await_confirmation("sig", 100)
        assert result.status is ConfirmationStatus.OK

    @pytest.mark.asyncio
    async def test_list_token_accounts_params(self, client):
        owner = Pubkey.new_unique()
        entry = {"pubkey": str(Pubkey.new_unique()), "account": {}}
        client.call = AsyncMock(return_value={"result": {"value": [entry]}})

        assert await client.list_token_accounts(owner, TOKEN_2022_PROGRAM_ID) == [entry]
        method, params = client.call.await_args.args
        assert method == "getTokenAccountsByOwner"
        assert params[0] == str(owner)
        assert params[1] == {"programId": str(TOKEN_2022_PROGRAM_ID)}
        assert params[2]["encoding"] == "jsonParsed"

    @pytest.mark.asyncio
    async def test_null_result_reads_as_empty(self, client):
        client.call = AsyncMock(return_value={"result": None})
        assert await client.list_token_accounts(Pubkey.new_unique(), TOKEN_PROGRAM_ID) == []


class TestSimulateAndSubmit:

    @pytest.fixture
    def client(self):
        return SolanaRpc(ReclaimConfig(rpc_url="http://node", confirm_poll_s=0))

    @pytest.fixture
    def message(self, wallet):
        payer = wallet.pubkey()
        ix = build_close_account_ix(TokenProgram.LEGACY_TOKEN, Pubkey.new_unique(), payer, payer)
        return Message.new_with_blockhash([ix], payer, Hash.new_unique())

    @pytest.mark.asyncio
    async def test_simulate_sends_unsigned_base64(self, client, message):
        client.call = AsyncMock(return_value={"result": {"value": {"err": None, "logs": ["ok"], "unitsConsumed": 2900}}})

        result = await client.simulate(message)

        assert result.ok
        assert result.logs == ("ok",)
        assert result.units_consumed == 2900
        method, params = client.call.await_args.args
        assert method == "simulateTransaction"
        assert base64.b64decode(params[0]) == bytes(Transaction.new_unsigned(message))
        assert params[1]["encoding"] == "base64"
        assert params[1]["sigVerify"] is False

    @pytest.mark.asyncio
    async def test_simulate_maps_error_and_logs(self, client, message):
        err = {"InstructionError": [0, {"Custom": 11}]}
        client.call = AsyncMock(
            return_value={"result": {"value": {"err": err, "logs": ["Program log: Error: Non-native account"]}}}
        )

        result = await client.simulate(message)

        assert not result.ok
        assert result.error == err
        assert result.logs == ("Program log: Error: Non-native account",)
        assert result.units_consumed is None

    @pytest.mark.asyncio
    async def test_submit_with_preflight(self, client, message, wallet):
        tx = await KeypairSigner(wallet).sign(message)
        client.call = AsyncMock(return_value={"result": "5sigABC"})

        assert await client.submit(tx) == "5sigABC"
        method, params = client.call.await_args.args
        assert method == "sendTransaction"
        assert base64.b64decode(params[0]) == bytes(tx)
        assert params[1]["encoding"] == "base64"
        assert params[1]["skipPreflight"] is False

    @pytest.mark.asyncio
    async def test_submit_without_signature_raises(self, client, message, wallet):
        tx = await KeypairSigner(wallet).sign(message)
        client.call = AsyncMock(return_value={"result": None})

        with pytest.raises(RpcError) as info:
            await client.submit(tx)
        assert info.value.method == "sendTransaction"
