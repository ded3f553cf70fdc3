"""Email sender for the HTTP relay, with rate limiting and retry logic."""

import asyncio
import html
import logging
from collections import defaultdict
from datetime import datetime, timedelta

import httpx
from pydantic import BaseModel, Field

from src.core.config import constants, settings


logger = logging.getLogger(__name__)


# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500


class SendEmailResult(BaseModel):
    """Result of sending an email."""

    success: bool = Field(..., description="Whether the email was accepted by the relay")
    message_id: str | None = Field(None, description="Relay message ID if successful")
    error: str | None = Field(None, description="Error message if failed")


class RateLimiter:
    """In-memory rate limiter for outbound email.

    Tracks sends per address per minute so a burst of task events cannot flood one inbox.
    """

    def __init__(self) -> None:
        self._requests: dict[str, list[datetime]] = defaultdict(list)

    def can_send(self, address: str) -> bool:
        """Check if an email can be sent to the given address."""
        now = datetime.now()
        cutoff = now - timedelta(minutes=1)

        self._requests[address] = [ts for ts in self._requests[address] if ts > cutoff]
        return len(self._requests[address]) < constants.MAX_EMAILS_PER_MINUTE

    def record_request(self, address: str) -> None:
        self._requests[address].append(datetime.now())


# Global rate limiter instance
rate_limiter = RateLimiter()


def render_html(body: str) -> str:
    """Wrap a plain-text body into minimal HTML paragraphs."""
    paragraphs = [html.escape(p.strip()) for p in body.split("\n\n") if p.strip()]
    return "".join(f"<p>{p.replace(chr(10), '<br>')}</p>" for p in paragraphs)


async def _post_email(
    *,
    payload: dict[str, object],
    max_retries: int,
    retry_delay: float,
) -> SendEmailResult:
    """POST to the relay, retrying server errors and transport failures with exponential backoff."""
    api_key = settings.require_credential("email_api_key", "Email relay")
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}

    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
                response = await client.post(settings.email_api_url, json=payload, headers=headers)

                if response.is_success:
                    return SendEmailResult(success=True, message_id=response.json().get("id"))

                if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                    return SendEmailResult(success=False, error=f"Client error: {response.text}")

                raise httpx.HTTPStatusError(
                    f"Server error: {response.status_code}", request=response.request, response=response
                )
        except httpx.HTTPError as e:
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay * (2**attempt))
            else:
                return SendEmailResult(success=False, error=f"Failed after retries: {e!s}")

    return SendEmailResult(success=False, error="Max retries exceeded")


async def send_email(
    *,
    to_address: str,
    subject: str,
    body: str,
    max_retries: int = 3,
    retry_delay: float = 1.0,
) -> SendEmailResult:
    """Send a plain-text email through the relay with retry logic."""
    if not settings.email_api_key:
        logger.debug("Email relay not configured, skipping send to %s", to_address)
        return SendEmailResult(success=False, error="Email relay not configured")

    if not rate_limiter.can_send(to_address):
        return SendEmailResult(success=False, error="Rate limit exceeded. Please try again later.")

    rate_limiter.record_request(to_address)
    payload: dict[str, object] = {
        "from": settings.email_from,
        "to": [to_address],
        "subject": subject,
        "text": body,
        "html": render_html(body),
    }
    return await _post_email(payload=payload, max_retries=max_retries, retry_delay=retry_delay)
