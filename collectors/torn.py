from typing import Dict, Optional

import httpx

from collectors.base import ApiError, RequestBudget, request_json
from config import TORN_API

USER_AGENT = "TornSentinel/2.0"


def _error_from_body(error) -> ApiError:
    """Builds an ApiError from the `error` field, which is normally {"code": int, "error": str}."""
    if not isinstance(error, dict):
        return ApiError(str(error or "API error"), 0)
    try:
        code = int(error.get("code") or 0)
    except (TypeError, ValueError):
        code = 0
    return ApiError(str(error.get("error", "API error")), code)


class TornFetcher:
    """Fetches one data group (a comma-separated selection list) from the user endpoint."""

    def __init__(self, client: httpx.AsyncClient, budget: Optional[RequestBudget] = None,
                 base_url: str = TORN_API["base_url"], timeout: float = TORN_API["timeout"]):
        self.client = client
        self.budget = budget or RequestBudget(TORN_API["max_calls_per_minute"], 60.0, TORN_API["warn_calls_per_minute"])
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(self, credential: str, data_group: str) -> Dict:
        if not credential:
            raise ApiError("Empty API key", 1)
        if not self.budget.can_call(credential):
            raise ApiError("Too many requests", 5)
        self.budget.record_call(credential)

        # The scheduler owns retries through its backoff table, so a single attempt here.
        data = await request_json(
            self.client,
            f"{self.base_url}/user/",
            params={"selections": data_group, "key": credential},
            timeout=self.timeout,
            attempts=1,
            headers={"User-Agent": USER_AGENT},
        )
        if not isinstance(data, dict):
            raise ApiError("Unexpected response shape", 0)
        if "error" in data:
            raise _error_from_body(data["error"])
        return data

    async def travel_status(self, credential: str) -> Dict:
        data = await self.fetch(credential, "travel")
        travel = data.get("travel")
        return travel if isinstance(travel, dict) else {}
