"""Tests for the HTTP backend collaborator."""

import json
from decimal import Decimal

import httpx
import pytest

from ecoswap.backend.base import BackendStep, InitResponse
from ecoswap.backend.http import HttpBackend
from ecoswap.crypto import encode_blob
from ecoswap.errors import BackendError

BASE_URL = "http://backend.test/api/"


class FakeApi:
    """Backend REST API served through httpx.MockTransport."""

    def __init__(self, wallet_record):
        self.wallet_record = wallet_record
        self.requests: list[tuple[str, str, dict, dict]] = []
        self.expire_next = False
        self.refresh_ok = True
        self.commit_ok = True

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/api/", "", 1)
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, path, body, dict(request.headers)))

        if path == "auth/refresh/":
            if not self.refresh_ok:
                return httpx.Response(401, json={"detail": "refresh expired"})
            return httpx.Response(200, json={"access_token": "fresh-token"})

        if self.expire_next:
            self.expire_next = False
            return httpx.Response(401, json={"detail": "token expired"})

        if path.endswith("tx/init/"):
            return httpx.Response(
                200,
                json={
                    "treasuryKey": "TreasuryKey111",
                    "rpcUrl": "https://rpc.test.invalid",
                    "mintAddress": "Mint111",
                    "encKey": encode_blob(self.wallet_record.encrypted_secret),
                },
            )
        if path.endswith("tx/complete/"):
            if not self.commit_ok:
                return httpx.Response(200, json={"ok": False, "detail": "unknown signature"})
            return httpx.Response(200, json={"ok": True})
        if path == "wallet/reward/":
            return httpx.Response(201, json={})
        if path == "wallet/balance/":
            return httpx.Response(200, json={"balance": "42.5"})
        return httpx.Response(404, json={"detail": "not found"})

    def paths(self) -> list[str]:
        return [path for _, path, _, _ in self.requests]


@pytest.fixture
def api(wallet_record) -> FakeApi:
    return FakeApi(wallet_record)


@pytest.fixture
def backend(api, settings) -> HttpBackend:
    return HttpBackend(
        base_url=BASE_URL,
        token="stale-token",
        settings=settings,
        transport=httpx.MockTransport(api.handler),
    )


class TestInitResponse:
    """Tests for init response parsing."""

    def test_aliases(self, wallet_record):
        """Test that the different backend field spellings are accepted."""
        encoded = encode_blob(wallet_record.encrypted_secret)
        fee = InitResponse.model_validate(
            {"treasuryKey": "T", "rpcUrl": "R", "encKey": encoded}
        )
        escrow = InitResponse.model_validate(
            {"destinationKey": "E", "rpc_url": "R", "encrypted_secret": encoded, "amount": "5"}
        )

        assert fee.destination == "T"
        assert escrow.destination == "E"
        assert escrow.amount == Decimal("5")

    def test_wallet_record_full_blob(self, wallet_record):
        """Test that the rebuilt record carries the whole encrypted blob."""
        response = InitResponse.model_validate(
            {"rpcUrl": "R", "encKey": encode_blob(wallet_record.encrypted_secret)}
        )

        record = response.wallet_record(wallet_record.public_key)
        assert record == wallet_record

    def test_repr_hides_blob(self, wallet_record):
        """Test that the encrypted blob stays out of the repr."""
        encoded = encode_blob(wallet_record.encrypted_secret)
        response = InitResponse.model_validate({"rpcUrl": "R", "encKey": encoded})
        assert encoded not in repr(response)

    def test_mint_metadata_fields(self, wallet_record):
        """Test that the mint step's asset metadata is read."""
        response = InitResponse.model_validate(
            {
                "rpcUrl": "R",
                "encKey": encode_blob(wallet_record.encrypted_secret),
                "name": "Eco Tee",
                "symbol": "ECO",
                "metadataUri": "https://meta.test.invalid/1.json",
            }
        )

        assert (response.name, response.symbol) == ("Eco Tee", "ECO")
        assert response.uri == "https://meta.test.invalid/1.json"


class TestHttpBackend:
    """Tests for HttpBackend requests."""

    @pytest.mark.asyncio
    async def test_init_sends_params_and_secret(self, backend, api):
        """Test that init posts to the step endpoint with the params."""
        response = await backend.init(
            BackendStep.ESCROW, {"flow_id": "order-1", "amount": Decimal("12.5")}, "abc123xy"
        )

        method, path, body, headers = api.requests[0]
        assert (method, path) == ("POST", "order/escrow/tx/init/")
        assert body == {"flow_id": "order-1", "amount": "12.5", "password": "abc123xy"}
        assert headers["authorization"] == "Bearer stale-token"
        assert response.destination == "TreasuryKey111"

    @pytest.mark.asyncio
    async def test_commit_sends_signature(self, backend, api):
        """Test that commit posts the signature to the completion endpoint."""
        await backend.commit(BackendStep.MINT_FEE, "sig-1", {"flow_id": "nft-1"})

        _, path, body, _ = api.requests[0]
        assert path == "wallet/mintFee/tx/complete/"
        assert body == {"flow_id": "nft-1", "signature": "sig-1"}

    @pytest.mark.asyncio
    async def test_commit_refused(self, backend, api):
        """Test that a refused commit raises a retryable BackendError."""
        api.commit_ok = False

        with pytest.raises(BackendError) as exc_info:
            await backend.commit(BackendStep.OWNERSHIP, "sig-1", {"flow_id": "nft-1"})
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_refresh_once_on_401(self, backend, api):
        """Test that an expired session is refreshed and the request replayed."""
        api.expire_next = True

        await backend.commit(BackendStep.MINT, "sig-1", {"flow_id": "nft-1"})

        assert api.paths() == [
            "nfts/mint/tx/complete/",
            "auth/refresh/",
            "nfts/mint/tx/complete/",
        ]
        assert api.requests[-1][3]["authorization"] == "Bearer fresh-token"

    @pytest.mark.asyncio
    async def test_failed_refresh(self, backend, api):
        """Test that a failed refresh surfaces as a 401 BackendError."""
        api.expire_next = True
        api.refresh_ok = False

        with pytest.raises(BackendError) as exc_info:
            await backend.commit(BackendStep.MINT, "sig-1", {"flow_id": "nft-1"})
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_http_error_status(self, settings):
        """Test that HTTP errors carry their status code."""
        backend = HttpBackend(
            base_url=BASE_URL,
            settings=settings,
            transport=httpx.MockTransport(
                lambda request: httpx.Response(500, json={"detail": "boom"})
            ),
        )

        with pytest.raises(BackendError) as exc_info:
            await backend.get_balance()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_unreachable(self, settings):
        """Test that transport failures become BackendError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        backend = HttpBackend(
            base_url=BASE_URL, settings=settings, transport=httpx.MockTransport(handler)
        )
        with pytest.raises(BackendError):
            await backend.init(BackendStep.MINT_FEE, {"flow_id": "x"}, "abc123xy")

    @pytest.mark.asyncio
    async def test_register_wallet(self, backend, api, wallet_record):
        """Test that registration posts the full encoded blob."""
        await backend.register_wallet(wallet_record, "abc123xy")

        _, path, body, _ = api.requests[0]
        assert path == "wallet/reward/"
        assert body["public_key"] == wallet_record.public_key
        assert body["private_key"] == encode_blob(wallet_record.encrypted_secret)

    @pytest.mark.asyncio
    async def test_get_balance(self, backend):
        """Test the off-ledger balance query."""
        assert await backend.get_balance() == Decimal("42.5")
