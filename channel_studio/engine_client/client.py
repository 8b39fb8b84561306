"""
Engine Client - Bridge between Channel Studio and the remote integration engine.
Handles channel deployment, start/stop, message injection, logs, and health probes.
"""

import logging
import httpx
from typing import Optional, Dict, List, Any

from channel_studio.compiler.channel import EngineChannel
from channel_studio.config.settings import settings
from channel_studio.errors import EngineRequestError

logger = logging.getLogger(__name__)


class EngineClient:
    """Async client for the remote engine's channel API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.engine_url).rstrip("/")
        api_key = api_key if api_key is not None else settings.engine_api_key
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.engine_timeout_seconds,
            headers=headers,
            transport=transport,
        )
        logger.info(f"[ENGINE] Client initialized with base_url={self.base_url}")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "EngineClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Transport ─────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Issue a request; any transport failure or non-2xx response raises EngineRequestError."""
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise EngineRequestError(f"{method} {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise EngineRequestError(f"{method} {path} failed: {e}") from e

        if resp.is_success:
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError:
                return resp.text

        error_id = None
        message = resp.text
        try:
            body = resp.json()
            if isinstance(body, dict):
                error_id = body.get("error_id")
                message = body.get("message") or message
        except ValueError:
            pass
        raise EngineRequestError(
            f"{method} {path} returned {resp.status_code}: {message}",
            status_code=resp.status_code,
            error_id=error_id,
        )

    # ── Health ────────────────────────────────────────────────────

    async def health_check(self) -> bool:
        """Check if the engine is reachable."""
        try:
            resp = await self._client.get("/health")
            return resp.status_code == 200
        except Exception as e:
            logger.warning(f"[ENGINE] Health check failed: {e}")
            return False

    # ── Channels ──────────────────────────────────────────────────

    async def deploy_channel(self, channel: EngineChannel, frontend_schema: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a compiled channel together with the editor graph it came from."""
        body = {"channel": channel.to_document(), "frontend_schema": frontend_schema}
        data = await self._request("POST", "/channels", json=body)
        logger.info(f"[ENGINE] Deployed channel {channel.id} ({channel.name})")
        return data or {}

    async def start_channel(self, channel_id: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/start")
        logger.info(f"[ENGINE] Started channel {channel_id}")

    async def stop_channel(self, channel_id: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/stop")
        logger.info(f"[ENGINE] Stopped channel {channel_id}")

    async def list_channels(self) -> List[Dict[str, Any]]:
        """Deployed channels with their stored frontend schema."""
        data = await self._request("GET", "/channels")
        return data or []

    async def test_channel(self, channel_id: str, payload_type: str, payload: str) -> Any:
        """Inject a test message into a running channel."""
        return await self._request(
            "POST", f"/channels/{channel_id}/test",
            json={"payload_type": payload_type, "payload": payload},
        )

    # ── Logs ──────────────────────────────────────────────────────

    async def get_logs(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/logs")
        return data or []
