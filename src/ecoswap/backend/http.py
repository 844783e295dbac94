"""HTTP implementation of the backend collaborator."""

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from ecoswap.backend.base import Backend, BackendStep, CommitResponse, InitResponse
from ecoswap.config import Settings, get_settings
from ecoswap.errors import BackendError
from ecoswap.wallet.base import WalletRecord

logger = logging.getLogger(__name__)

# step -> (init path, commit path)
STEP_ENDPOINTS: dict[BackendStep, tuple[str, str]] = {
    BackendStep.MINT_FEE: ("wallet/mintFee/tx/init/", "wallet/mintFee/tx/complete/"),
    BackendStep.MINT: ("nfts/mint/tx/init/", "nfts/mint/tx/complete/"),
    BackendStep.ESCROW: ("order/escrow/tx/init/", "order/escrow/tx/complete/"),
    BackendStep.OWNERSHIP: ("nfts/transfer/tx/init/", "nfts/transfer/tx/complete/"),
}

REGISTER_PATH = "wallet/reward/"
BALANCE_PATH = "wallet/balance/"
REFRESH_PATH = "auth/refresh/"


class HttpBackend(Backend):
    """Backend reached over its REST API.

    A 401 triggers one token refresh and a single replay of the request.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.base_url = (base_url or settings.backend_api_url).rstrip("/") + "/"
        self.token = token if token is not None else settings.backend_api_token
        self.timeout = timeout or settings.http_timeout
        self._transport = transport

    async def init(self, step: BackendStep, params: dict[str, Any], secret: str) -> InitResponse:
        path, _ = STEP_ENDPOINTS[step]
        body = {**_jsonable(params), "password": secret}
        data = await self._request("POST", path, json=body)
        try:
            return InitResponse.model_validate(data)
        except ValueError as e:
            raise BackendError(f"{step.value} init: malformed response") from e

    async def commit(
        self, step: BackendStep, signature: str, params: dict[str, Any]
    ) -> CommitResponse:
        _, path = STEP_ENDPOINTS[step]
        body = {**_jsonable(params), "signature": signature}
        data = await self._request("POST", path, json=body)
        response = CommitResponse.model_validate(data or {})
        if not response.ok:
            raise BackendError(f"{step.value} commit refused: {response.detail}")
        return response

    async def register_wallet(self, record: WalletRecord, secret: str) -> None:
        body = {**record.to_dict(), "key": secret}
        await self._request("POST", REGISTER_PATH, json=body)
        logger.info(f"Registered wallet {record.public_key}")

    async def get_balance(self) -> Decimal:
        data = await self._request("GET", BALANCE_PATH)
        try:
            return Decimal(str(data["balance"]))
        except (KeyError, TypeError, ArithmeticError) as e:
            raise BackendError("balance: malformed response") from e

    async def _request(
        self, method: str, path: str, json: Optional[dict] = None, _retried: bool = False
    ) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Backend {method} {path} failed: {e}")
            raise BackendError(f"{path}: {e}") from e

        if response.status_code == 401 and not _retried:
            await self._refresh_token()
            return await self._request(method, path, json=json, _retried=True)

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning(f"Backend {method} {path} -> {response.status_code}: {detail}")
            raise BackendError(
                f"{path}: HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{path}: invalid JSON response") from e

    async def _refresh_token(self) -> None:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(REFRESH_PATH, json={})
        except httpx.HTTPError as e:
            raise BackendError(f"session refresh failed: {e}", status_code=401) from e

        if response.status_code != 200:
            raise BackendError(
                "session expired",
                status_code=401,
                user_message="Your session has expired. Please log in again.",
            )
        self.token = response.json().get("access_token", self.token)
        logger.info("Backend session refreshed")


def _jsonable(params: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in params.items():
        if isinstance(value, Decimal):
            value = str(value)
        elif hasattr(value, "__bytes__") and not isinstance(value, (bytes, str)):
            value = str(value)
        out[key] = value
    return out


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or data)
    return str(data)
