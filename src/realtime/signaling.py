"""SDP offer/answer exchange with the realtime session backend.

The backend accepts the client's offer as ``application/sdp`` and answers
with the remote SDP, brokering the credentials for the realtime endpoint.
"""

import asyncio
import logging

import aiohttp

from src.realtime.config import SignalingConfig
from src.realtime.errors import SignalingError
from src.realtime.transport.base import SignalingClient

logger = logging.getLogger(__name__)

# Characters of an error response body kept in SignalingError
_ERROR_BODY_LIMIT = 300


class HttpSignalingClient(SignalingClient):
    """Posts the local offer to the backend and returns its answer."""

    def __init__(
        self,
        config: SignalingConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize signaling client.

        Args:
            config: Signaling endpoint configuration
            session: Optional shared HTTP session (owned by the caller)
        """
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def exchange_offer(self, offer_sdp: str) -> str:
        """Send the offer SDP and return the answer SDP.

        Raises:
            SignalingError: On non-2xx responses, network errors or timeout
        """
        session = await self._ensure_session()
        url = self.config.session_url
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)

        logger.debug("Exchanging SDP offer", extra={"url": url, "offer_bytes": len(offer_sdp)})

        try:
            async with session.post(
                url,
                data=offer_sdp,
                headers={"Content-Type": "application/sdp"},
                timeout=timeout,
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise SignalingError(
                        f"Realtime SDP exchange failed ({resp.status}). "
                        f"Body: {text[:_ERROR_BODY_LIMIT]}",
                        status=resp.status,
                        body=text[:_ERROR_BODY_LIMIT],
                    )
        except asyncio.TimeoutError as e:
            raise SignalingError(
                f"Realtime SDP exchange timed out after {self.config.timeout_s}s"
            ) from e
        except aiohttp.ClientError as e:
            raise SignalingError(f"Realtime SDP exchange failed: {e}") from e

        logger.info("SDP answer received", extra={"answer_bytes": len(text)})
        return text
