"""DataForSEO keyword-metrics client."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Literal

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.utils.config import settings
from src.utils.exceptions import (
    ErrorKind,
    ProviderError,
    is_retryable,
    provider_error_from_httpx,
)
from src.utils.models import KeywordMetrics

logger = structlog.get_logger()

SEARCH_VOLUME_PATH = "/keywords_data/google/adwords/search_volume/live"
SUCCESS_CODE = 20000
RATE_LIMIT_CODE = 42900
MAX_KEYWORDS_PER_REQUEST = 100


def competition_level(competition: float) -> Literal["low", "medium", "high"]:
    """Bucket a 0-1 competition index."""
    if competition <= 0.33:
        return "low"
    if competition <= 0.66:
        return "medium"
    return "high"


class DataForSEOClient:
    """
    Fetch keyword metrics from DataForSEO's Google Ads search-volume endpoint.

    Request: [{keywords, location_code, language_code}] with basic auth.
    A call succeeds when the first task reports status_code 20000.

    API Docs: https://docs.dataforseo.com/v3/keywords_data/google_ads/search_volume/live/
    """

    def __init__(
        self,
        login: str,
        password: str,
        base_url: str = "https://api.dataforseo.com/v3",
        timeout: float = 30.0,
        cost_per_request: float = 0.01,
        batch_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._auth = (login, password)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cost_per_request = cost_per_request
        self.batch_delay = batch_delay
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "dataforseo"

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def get_keyword_metrics(
        self,
        keywords: list[str],
        location_code: int = 2840,
        language_code: str = "en",
    ) -> list[KeywordMetrics]:
        """
        Fetch metrics for up to 100 keywords in one request.

        Args:
            keywords: Keywords to look up.
            location_code: DataForSEO location (2840 = United States).
            language_code: Language code.

        Returns:
            One KeywordMetrics per keyword the provider returned.

        Raises:
            ProviderError: Tagged with the failure kind.
        """
        if not keywords:
            return []
        if len(keywords) > MAX_KEYWORDS_PER_REQUEST:
            raise ValueError(f"At most {MAX_KEYWORDS_PER_REQUEST} keywords per request")

        payload = [
            {
                "keywords": keywords,
                "location_code": location_code,
                "language_code": language_code,
            }
        ]

        async with httpx.AsyncClient(timeout=self.timeout, auth=self._auth) as client:
            try:
                response = await client.post(f"{self.base_url}{SEARCH_VOLUME_PATH}", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise provider_error_from_httpx("DataForSEO", e) from e
            except ValueError as e:
                raise ProviderError(
                    f"DataForSEO returned malformed JSON: {e}", ErrorKind.PERMANENT, self.name
                ) from e

        task = self._first_task(data)
        results = task.get("result") or []
        return [self._to_metrics(item) for item in results if item.get("keyword")]

    def _first_task(self, data: dict[str, Any]) -> dict[str, Any]:
        tasks = data.get("tasks") or []
        if not tasks:
            raise ProviderError(
                "DataForSEO response has no tasks", ErrorKind.PERMANENT, self.name
            )
        task = tasks[0]
        status_code = task.get("status_code")
        if status_code == SUCCESS_CODE:
            return task

        message = task.get("status_message", "unknown error")
        if status_code == RATE_LIMIT_CODE:
            raise ProviderError(
                f"DataForSEO rate limit exceeded: {message}", ErrorKind.RATE_LIMITED, self.name
            )
        if isinstance(status_code, int) and status_code >= 50000:
            raise ProviderError(
                f"DataForSEO temporary failure: {message}", ErrorKind.UNAVAILABLE, self.name
            )
        raise ProviderError(f"DataForSEO API error: {message}", ErrorKind.PERMANENT, self.name)

    def _to_metrics(self, item: dict[str, Any]) -> KeywordMetrics:
        """Convert a search-volume result to KeywordMetrics."""
        # competition_index is 0-100; older payloads carry a 0-1 "competition" float
        competition_index = item.get("competition_index")
        raw_competition = item.get("competition")
        if competition_index is not None:
            competition = float(competition_index) / 100
        elif isinstance(raw_competition, int | float):
            competition = float(raw_competition)
        else:
            competition = 0.0
        competition = max(0.0, min(competition, 1.0))

        monthly = item.get("monthly_searches") or []
        monthly = sorted(monthly, key=lambda m: (m.get("year", 0), m.get("month", 0)))

        return KeywordMetrics(
            keyword=item["keyword"],
            search_volume=int(item.get("search_volume") or 0),
            difficulty=round(competition * 100),
            cpc=float(item.get("cpc") or 0.0),
            competition=competition,
            competition_level=competition_level(competition),
            trend=[int(m.get("search_volume") or 0) for m in monthly],
        )

    async def get_keyword_metrics_batch(
        self,
        keywords: list[str],
        location_code: int = 2840,
        language_code: str = "en",
    ) -> list[KeywordMetrics]:
        """
        Fetch metrics for any number of keywords.

        Keywords are sent in groups of at most 100 with a pause between
        groups to stay under the provider's rate limit.
        """
        metrics: list[KeywordMetrics] = []
        for start in range(0, len(keywords), MAX_KEYWORDS_PER_REQUEST):
            if start:
                await self._sleep(self.batch_delay)
            chunk = keywords[start : start + MAX_KEYWORDS_PER_REQUEST]
            metrics.extend(await self.get_keyword_metrics(chunk, location_code, language_code))
            logger.debug("DataForSEO batch fetched", offset=start, size=len(chunk))
        return metrics


def create_dataforseo_client() -> DataForSEOClient:
    """Create a DataForSEOClient from settings.

    Raises:
        ConfigurationError: If DataForSEO credentials are not set.
    """
    login, password = settings.require_dataforseo_credentials()
    return DataForSEOClient(
        login=login,
        password=password,
        base_url=settings.dataforseo_base_url,
        timeout=settings.http_timeout_seconds,
        cost_per_request=settings.dataforseo_cost_per_request,
    )
