import logging
import os
import time
from dataclasses import asdict, dataclass
from http import HTTPStatus
from typing import Callable

import requests
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from picqer_api.config import settings
from picqer_api.exceptions import RateLimitExceeded, TransportError
from picqer_api.rate_gate import RateGate
from picqer_api.type_defs import JsonObject, QueryParams, is_record_list

logger = logging.getLogger(__name__)

RESPONSE_PREVIEW_LENGTH = 300
USER_AGENT = "picqer-sync (+https://picqer.com/en/api)"


class _RateLimited(Exception):
    def __init__(self, url: str) -> None:
        super().__init__(f"Rate limit reached for {url}")
        self.url = url


@dataclass
class ClientStats:
    requests: int = 0
    rate_limit_hits: int = 0
    retries: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _preview_response_body(text: str) -> str:
    if len(text) <= RESPONSE_PREVIEW_LENGTH:
        return text
    return f"{text[:RESPONSE_PREVIEW_LENGTH]}..."


class Client(requests.Session):
    """Read-only Picqer API client paging collections under a shared rate gate."""

    def __init__(
        self,
        token: str = "",
        base_url: str = "",
        *,
        rate_gate: RateGate | None = None,
        page_size: int | None = None,
        rate_limit_cooldown: float | None = None,
        max_rate_limit_retries: int | None = None,
        max_transport_attempts: int | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__()

        config = settings.picqer
        self.token = token or os.getenv("PICQER_API_KEY") or config.token
        resolved_base_url = base_url or os.getenv("PICQER_API_URL") or config.base_url
        if not self.token or not resolved_base_url:
            raise ValueError("Picqer token and base_url must be provided.")

        self.base_url = resolved_base_url.rstrip("/")
        self.rate_gate = rate_gate or RateGate(config.requests_per_minute)
        self.page_size = page_size or config.page_size
        self.rate_limit_cooldown = (
            config.rate_limit_cooldown_seconds
            if rate_limit_cooldown is None
            else rate_limit_cooldown
        )
        self.max_rate_limit_retries = (
            config.max_rate_limit_retries
            if max_rate_limit_retries is None
            else max_rate_limit_retries
        )
        self.max_transport_attempts = (
            max_transport_attempts or config.max_transport_attempts
        )
        self.timeout = timeout or config.timeout_seconds
        self._sleep = sleep
        self.stats = ClientStats()

        self.headers.update(
            {
                "accept": "application/json",
                "Authorization": f"Bearer {self.token}",
                "User-Agent": USER_AGENT,
            }
        )

    def request(self, method: str, url: str, *args, **kwargs) -> requests.Response:
        self.rate_gate.wait()
        self.stats.requests += 1
        response = super().request(method, url, *args, **kwargs)

        if response.status_code == HTTPStatus.TOO_MANY_REQUESTS.value:
            self.stats.rate_limit_hits += 1
            logger.info("Rate limit reached for %s", url)
            raise _RateLimited(url)

        elif response.status_code == HTTPStatus.UNAUTHORIZED.value:
            logger.error("Received authorization error: %s", response.text)
            raise PermissionError("Authorization failed with the provided token.")

        elif response.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR.value:
            logger.warning(
                "Request to %s failed with status code %s. Retrying...",
                url,
                response.status_code,
            )
            raise requests.HTTPError(
                f"Received server error {response.status_code}: "
                f"{_preview_response_body(response.text)}",
                response=response,
            )

        elif response.status_code != HTTPStatus.OK.value:
            raise TransportError(
                f"Received unexpected status code {response.status_code} for {url}: "
                f"{_preview_response_body(response.text)}"
            )

        return response

    def _on_rate_limit_sleep(self, retry_state: RetryCallState) -> None:
        self.stats.retries += 1
        self.rate_gate.defer(self.rate_limit_cooldown)
        logger.warning(
            "Rate limited; sleeping %ss before retry (attempt %s/%s)",
            self.rate_limit_cooldown,
            retry_state.attempt_number,
            self.max_rate_limit_retries,
        )

    def _on_transport_retry(self, retry_state: RetryCallState) -> None:
        self.stats.retries += 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Transport error on attempt %s/%s: %s",
            retry_state.attempt_number,
            self.max_transport_attempts,
            error,
        )

    def _get_with_transport_retries(
        self, url: str, params: QueryParams
    ) -> requests.Response:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_transport_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(requests.RequestException),
            sleep=self._sleep,
            before_sleep=self._on_transport_retry,
        )
        try:
            return retrying(self.get, url, params=params, timeout=self.timeout)
        except RetryError as error:
            last_error = error.last_attempt.exception()
            raise TransportError(
                f"GET {url} failed after {error.last_attempt.attempt_number} attempts: {last_error}"
            ) from last_error

    def get_json(self, endpoint: str, params: QueryParams | None = None) -> object:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        retrying = Retrying(
            stop=stop_after_attempt(self.max_rate_limit_retries + 1),
            wait=wait_fixed(self.rate_limit_cooldown),
            retry=retry_if_exception_type(_RateLimited),
            sleep=self._sleep,
            before_sleep=self._on_rate_limit_sleep,
        )
        try:
            response = retrying(self._get_with_transport_retries, url, dict(params or {}))
        except RetryError as error:
            raise RateLimitExceeded(url, error.last_attempt.attempt_number) from error

        try:
            return response.json()
        except ValueError as error:
            raise TransportError(f"Invalid JSON payload from {url}") from error

    def fetch_page(
        self,
        endpoint: str,
        offset: int,
        page_size: int | None = None,
        params: QueryParams | None = None,
    ) -> tuple[list[JsonObject], bool]:
        expected_size = page_size or self.page_size
        query: QueryParams = dict(params or {})
        query["offset"] = offset

        payload = self.get_json(endpoint, query)
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        if not is_record_list(payload):
            raise TransportError(
                f"Unexpected payload type from {endpoint}: expected a list of records"
            )

        has_more = len(payload) == expected_size
        logger.debug(
            "Fetched %s records from %s at offset %s (has_more=%s)",
            len(payload),
            endpoint,
            offset,
            has_more,
        )
        return payload, has_more
