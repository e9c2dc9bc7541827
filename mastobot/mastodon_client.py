"""
Mastodon Client - the three REST calls the reply pipeline depends on.

    fetch_status_context: ancestors/descendants of a status (thread context)
    post_reply: reply to a status, mentioning its author
    post_status: standalone post (free posts)

Usage:
    async with httpx.AsyncClient(timeout=30) as http:
        mastodon = MastodonClient(
            base_url=settings.mastodon_base_url,
            access_token=settings.mastodon_access_token,
            http_client=http,
        )
        ctx = await mastodon.fetch_status_context("109876543210")
"""

import logging

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import Visibility
from mastobot.models import StatusContext

logger = logging.getLogger(__name__)


class MastodonAPIError(Exception):
    """Raised when Mastodon answers with a non-success status."""

    def __init__(self, status_code: int, body: str, action: str = "request"):
        self.status_code = status_code
        self.body = body
        self.action = action
        super().__init__(f"Mastodon {action} error {status_code}: {body}")


def _is_transient_error(e: BaseException) -> bool:
    """Connection failures and timeouts are worth another try."""
    return isinstance(e, (httpx.ConnectError, httpx.TimeoutException))


class MastodonClient:
    """Thin async wrapper over the Mastodon REST API."""

    def __init__(self, base_url: str, access_token: str, http_client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.http = http_client

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if not response.is_success:
            raise MastodonAPIError(response.status_code, response.text, action)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception(_is_transient_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def fetch_status_context(self, status_id: str) -> StatusContext:
        """
        Fetch the conversation around a status.

        Transient connection errors are retried; this call is idempotent.

        Returns:
            StatusContext with ancestors ordered oldest first.

        Raises:
            MastodonAPIError: On a non-success HTTP status.
            httpx.HTTPError: On transport failures after retries.
            EventDecodeError: If the body is not a valid context.
        """
        response = await self.http.get(
            f"{self.base_url}/api/v1/statuses/{status_id}/context",
            headers=self._headers,
        )
        self._raise_for_status(response, "context")
        return StatusContext.from_api(response.json())

    async def post_reply(
        self,
        status_id: str,
        visibility: Visibility,
        reply_to_handle: str,
        body: str,
    ) -> None:
        """
        Reply to a status, addressing its author.

        Args:
            status_id: Status being answered.
            visibility: Visibility copied from the original status.
            reply_to_handle: Author's acct, without the leading @.
            body: Reply text.

        Raises:
            MastodonAPIError: On a non-success HTTP status.
        """
        response = await self.http.post(
            f"{self.base_url}/api/v1/statuses",
            headers=self._headers,
            json={
                "status": f"@{reply_to_handle} {body}",
                "in_reply_to_id": status_id,
                "visibility": Visibility.parse(visibility).value,
            },
        )
        self._raise_for_status(response, "post reply")
        logger.debug(f"Posted reply to {status_id} (@{reply_to_handle})")

    async def post_status(self, body: str, visibility: Visibility) -> None:
        """
        Publish a standalone status.

        Raises:
            MastodonAPIError: On a non-success HTTP status.
        """
        response = await self.http.post(
            f"{self.base_url}/api/v1/statuses",
            headers=self._headers,
            json={"status": body, "visibility": Visibility.parse(visibility).value},
        )
        self._raise_for_status(response, "post status")
        logger.debug("Posted standalone status")
