"""Shared test doubles and coordinates."""

from typing import Any

# San Francisco coordinates for testing
MARKET_ST = (37.7749, -122.4194)
NEAR_MARKET_ST = (37.7750, -122.4190)
MISSION_DOLORES = (37.7596, -122.4269)
GOLDEN_GATE_PARK = (37.7694, -122.4862)
OAKLAND = (37.8044, -122.2712)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingProvider:
    """Delivery provider that fails the first ``fail_times`` calls per token.

    Tokens in ``fail_tokens`` always fail.
    """

    def __init__(self, fail_times: int = 0, fail_tokens: set[str] | None = None) -> None:
        self.fail_times = fail_times
        self.fail_tokens = fail_tokens or set()
        self.calls: list[tuple[str, Any]] = []
        self._failures: dict[str, int] = {}

    def _outcome(self, token: str) -> bool:
        if token in self.fail_tokens:
            return False
        seen = self._failures.get(token, 0)
        if seen < self.fail_times:
            self._failures[token] = seen + 1
            return False
        return True

    async def send(self, device_token: str, message: dict[str, Any]) -> bool:
        self.calls.append(("send", device_token))
        return self._outcome(device_token)

    async def send_batch(
        self, device_tokens: list[str], message: dict[str, Any]
    ) -> dict[str, bool]:
        self.calls.append(("send_batch", list(device_tokens)))
        return {token: self._outcome(token) for token in device_tokens}
