import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from services.error_sanitizer import sanitize_provider_diagnostic
from services.errors import GenerationError, UpstreamError, UpstreamTimeout
from services.request_encoder import EncodedRequest

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


def is_transient_status(status_code: int) -> bool:
    """429 and any 5xx are worth one more attempt."""
    return status_code == 429 or 500 <= status_code <= 599


def _provider_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text


class UpstreamCaller:
    """
    Issues image edit requests to the generation provider.

    At most two attempts are made, strictly one after the other. The second
    attempt happens only when the first one timed out, hit a network error,
    or was answered with 429/5xx. Whatever the second attempt yields is final.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint_url: str,
        api_key: str,
        *,
        attempt_timeout: float,
        retry_backoff: float = 1.0,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self.endpoint_url = endpoint_url
        self._api_key = api_key
        self.attempt_timeout = attempt_timeout
        self.retry_backoff = retry_backoff
        self.max_attempts = max_attempts
        self._sleep = sleep

    @property
    def _secrets(self) -> Sequence[str]:
        return (self._api_key,)

    async def _post(self, encoded: EncodedRequest) -> httpx.Response:
        return await self._client.post(
            self.endpoint_url,
            data=encoded.fields,
            files=encoded.files,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(self.attempt_timeout),
        )

    def _error_from_response(self, response: httpx.Response, attempt: int) -> UpstreamError:
        diagnostic = sanitize_provider_diagnostic(
            _provider_message(response), secrets=self._secrets
        )
        message = f"Image provider error {response.status_code}"
        if diagnostic:
            message = f"{message}: {diagnostic}"
        return UpstreamError(
            message, provider_status=response.status_code, attempts=attempt
        )

    async def _attempt(self, encoded: EncodedRequest, attempt: int) -> httpx.Response:
        """
        Run one attempt under its own timeout.

        Raises UpstreamTimeout/UpstreamError for failures; returns the
        response for any HTTP answer, successful or not.
        """
        try:
            return await asyncio.wait_for(self._post(encoded), timeout=self.attempt_timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise UpstreamTimeout(
                f"Image provider did not respond within {self.attempt_timeout:g}s",
                attempts=attempt,
            )
        except httpx.TransportError as e:
            logger.warning("Network error calling image provider: %s", type(e).__name__)
            raise UpstreamError(
                "Network error contacting image provider", attempts=attempt
            )

    async def call(self, encoded: EncodedRequest) -> httpx.Response:
        """Return the first successful response, or raise the final failure."""
        failure: Optional[GenerationError] = None
        for attempt in range(1, self.max_attempts + 1):
            started = time.monotonic()
            try:
                response = await self._attempt(encoded, attempt)
            except (UpstreamError, UpstreamTimeout) as e:
                failure = e
            else:
                elapsed = time.monotonic() - started
                if response.is_success:
                    logger.info(
                        "Image provider answered %s in %.2fs (attempt %s/%s)",
                        response.status_code,
                        elapsed,
                        attempt,
                        self.max_attempts,
                    )
                    return response
                failure = self._error_from_response(response, attempt)
                if not is_transient_status(response.status_code):
                    logger.warning(
                        "Image provider rejected request with %s (attempt %s/%s)",
                        response.status_code,
                        attempt,
                        self.max_attempts,
                    )
                    raise failure

            if attempt < self.max_attempts:
                logger.warning(
                    "Transient image provider failure (%s); retrying in %.1fs (attempt %s/%s)",
                    failure.message,
                    self.retry_backoff,
                    attempt,
                    self.max_attempts,
                )
                if self.retry_backoff > 0:
                    await self._sleep(self.retry_backoff)

        logger.error(
            "Image provider failed after %s attempts: %s", self.max_attempts, failure.message
        )
        raise failure
