"""Push delivery providers used by the dispatcher's worker pool."""

import logging
from typing import Any, Protocol

import httpx

from ..core.exceptions import DeliveryFailedError

logger = logging.getLogger(__name__)


class DeliveryProvider(Protocol):
    async def send(self, device_token: str, message: dict[str, Any]) -> bool: ...

    async def send_batch(
        self, device_tokens: list[str], message: dict[str, Any]
    ) -> dict[str, bool]:
        """Per-token success flags; tokens missing from the result count as failed."""
        ...


class LoggingDeliveryProvider:
    """Development provider: logs every notification and reports success."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, device_token: str, message: dict[str, Any]) -> bool:
        self.sent.append((device_token, message))
        logger.info(f"Delivered notification {message.get('type', 'message')} to {device_token}")
        return True

    async def send_batch(
        self, device_tokens: list[str], message: dict[str, Any]
    ) -> dict[str, bool]:
        return {token: await self.send(token, message) for token in device_tokens}


class HttpDeliveryProvider:
    """Push gateway client.

    ``POST {base_url}/send`` with ``{"token", "message"}`` and
    ``POST {base_url}/send-batch`` with ``{"tokens", "message"}`` answering
    ``{"results": {token: bool}}``. Non-2xx answers are failures; transport
    errors raise DeliveryFailedError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, device_token: str, message: dict[str, Any]) -> bool:
        response = await self._post("/send", {"token": device_token, "message": message})
        if response.is_success:
            return True
        logger.warning(f"Push gateway rejected notification: HTTP {response.status_code}")
        return False

    async def send_batch(
        self, device_tokens: list[str], message: dict[str, Any]
    ) -> dict[str, bool]:
        response = await self._post("/send-batch", {"tokens": device_tokens, "message": message})
        if not response.is_success:
            logger.warning(f"Push gateway rejected batch: HTTP {response.status_code}")
            return dict.fromkeys(device_tokens, False)

        try:
            results = response.json().get("results", {})
        except ValueError as e:
            raise DeliveryFailedError(f"Malformed batch response: {e}") from e
        return {token: bool(results.get(token, False)) for token in device_tokens}

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(f"{self.base_url}{path}", json=payload)
        except httpx.TimeoutException as e:
            raise DeliveryFailedError(f"Push gateway timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise DeliveryFailedError(f"Push gateway unreachable: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
