# src/libs/replay-common/replay_common/replay_endpoint_client.py
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

import httpx
from tenacity import retry, stop_after_attempt, wait_fixed, before_log, retry_if_exception_type

from .config import REPLAY_ENDPOINT_URL, REPLAY_ENDPOINT_TIMEOUT_SECONDS, REPLAY_ENDPOINT_CONNECT_RETRIES
from .database_models import ITEM_REPLAYED, ITEM_FAILED, ITEM_NOT_FOUND
from .exceptions import ReplayEndpointError, ReplayEndpointTimeout, ReplayTargetNotFound
from .monitoring import replay_endpoint_timer

logger = logging.getLogger(__name__)

REPLAY_PATH = "/api/v1/replay"
NO_RESULT_ERROR = "no result returned"


@dataclass(frozen=True)
class ReplayOutcome:
    record_id: int
    status: str
    emitted_id: Optional[str] = None
    error: Optional[str] = None


class ReplayEndpointClient:
    """
    Calls the downstream event app that re-emits failed records.

    One call carries a batch of record ids for a single (event key, day) and
    returns one outcome per id, in request order.
    """

    def __init__(
        self,
        base_url: str = REPLAY_ENDPOINT_URL,
        timeout_seconds: float = REPLAY_ENDPOINT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = base_url.rstrip("/") + REPLAY_PATH
        self._timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @retry(
        wait=wait_fixed(0.2),
        stop=stop_after_attempt(REPLAY_ENDPOINT_CONNECT_RETRIES),
        before=before_log(logger, logging.INFO),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True
    )
    async def _post(self, payload: dict) -> httpx.Response:
        return await self._client.post(self._url, json=payload, timeout=self._timeout_seconds)

    async def replay(self, event_key: str, day: date, record_ids: Sequence[int]) -> List[ReplayOutcome]:
        """
        Raises ReplayTargetNotFound when the endpoint answers 404 for the batch,
        ReplayEndpointTimeout on timeout, and ReplayEndpointError otherwise.
        """
        payload = {"eventKey": event_key, "day": day.isoformat(), "ids": list(record_ids)}
        try:
            with replay_endpoint_timer(event_key):
                response = await self._post(payload)
        except httpx.TimeoutException as e:
            raise ReplayEndpointTimeout(
                f"Replay endpoint timed out after {self._timeout_seconds:g}s"
            ) from e
        except httpx.ConnectError as e:
            raise ReplayEndpointError(f"Replay endpoint unreachable: {e}") from e
        except httpx.HTTPError as e:
            raise ReplayEndpointError(f"Replay endpoint call failed: {e}") from e

        if response.status_code == 404:
            raise ReplayTargetNotFound(f"Replay target not found for {event_key} on {day.isoformat()}")
        if response.status_code >= 300:
            raise ReplayEndpointError(
                f"Replay endpoint returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            results = response.json().get("results") or []
        except (ValueError, AttributeError) as e:
            raise ReplayEndpointError("Replay endpoint returned an unreadable body") from e

        return self._match_results(record_ids, results)

    @staticmethod
    def _match_results(record_ids: Sequence[int], results: list) -> List[ReplayOutcome]:
        by_id = {}
        for result in results:
            try:
                by_id[int(result["id"])] = result
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed replay result.", extra={"result": str(result)[:200]})

        outcomes = []
        for record_id in record_ids:
            result = by_id.get(record_id)
            if result is None:
                outcomes.append(ReplayOutcome(record_id, ITEM_FAILED, error=NO_RESULT_ERROR))
                continue
            status = str(result.get("status") or "").upper()
            if status == ITEM_REPLAYED:
                emitted = result.get("emittedId")
                outcomes.append(ReplayOutcome(record_id, ITEM_REPLAYED, emitted_id=str(emitted) if emitted is not None else None))
            elif status == ITEM_NOT_FOUND:
                outcomes.append(ReplayOutcome(record_id, ITEM_NOT_FOUND, error=result.get("error") or "record not found"))
            else:
                outcomes.append(ReplayOutcome(record_id, ITEM_FAILED, error=result.get("error") or "replay failed"))
        return outcomes


_replay_client_instance: Optional[ReplayEndpointClient] = None


def get_replay_endpoint_client() -> ReplayEndpointClient:
    global _replay_client_instance
    if _replay_client_instance is None:
        _replay_client_instance = ReplayEndpointClient()
    return _replay_client_instance


async def close_replay_endpoint_client() -> None:
    global _replay_client_instance
    if _replay_client_instance is not None:
        await _replay_client_instance.close()
        _replay_client_instance = None
