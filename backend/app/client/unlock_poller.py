"""Client-side wait for a survey unlock to land

After Stripe redirects the buyer back, the webhook that flips ``is_paid`` may
not have arrived yet. ``wait_for_paid`` polls the unlock-status endpoint
until the flag is observed or the deadline passes. It only reads state the
webhook already committed; a timeout means "still processing", not "failed".
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger("poller")

PaidFetcher = Callable[[str], Awaitable[Optional[bool]]]

UNLOCKED_MESSAGE = "Payment received. Your responses are unlocked."
PROCESSING_MESSAGE = (
    "We're still processing your payment. "
    "Your responses will unlock automatically in a moment; refresh to check again."
)


class UnlockStatusClient:
    """Reads a survey's paid flag from the backend using the owner's session cookie"""

    def __init__(self, base_url: str, session_id: str, client: Optional[httpx.AsyncClient] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=5.0)
        self._headers = {"Cookie": f"session_id={session_id}"}

    async def fetch_is_paid(self, survey_id: str) -> Optional[bool]:
        """True/False from the server, or None when the request failed"""
        try:
            response = await self._client.get(
                f"/api/surveys/{survey_id}/unlock-status", headers=self._headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Unlock status request for survey {survey_id} failed: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return bool(data.get("is_paid"))

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


async def wait_for_paid(
    fetch_is_paid: PaidFetcher,
    survey_id: str,
    timeout_ms: Optional[int] = None,
    interval_ms: Optional[int] = None
) -> bool:
    """Poll until the survey reads as paid (True) or timeout_ms elapses (False).

    The first query is sent immediately; later ones are spaced interval_ms
    apart. A failed query counts as "not paid yet". Cancelling the awaiting
    task stops polling at once.
    """
    timeout_ms = settings.UNLOCK_POLL_TIMEOUT_MS if timeout_ms is None else timeout_ms
    interval_ms = settings.UNLOCK_POLL_INTERVAL_MS if interval_ms is None else interval_ms

    async def _poll() -> bool:
        attempt = 0
        while True:
            attempt += 1
            if await fetch_is_paid(survey_id):
                logger.info(f"Survey {survey_id} observed as paid on poll {attempt}")
                return True
            await asyncio.sleep(interval_ms / 1000)

    try:
        return await asyncio.wait_for(_poll(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        logger.info(f"Survey {survey_id} not yet paid after {timeout_ms}ms; webhook may be delayed")
        return False


def unlock_status_message(paid: bool) -> str:
    """Text to show after waiting; never reports a timeout as a failed payment"""
    return UNLOCKED_MESSAGE if paid else PROCESSING_MESSAGE
