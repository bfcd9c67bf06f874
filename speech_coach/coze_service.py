"""This module contains the client that talks to the Coze chat API"""

import json
import logging

import httpx

from .config import Settings
from .exceptions import ConfigurationError, UpstreamRequestError

logger = logging.getLogger(__name__)


def build_chat_payload(settings: Settings, video_url: str, user_id: str | None) -> dict:
    """Build the v3/chat request asking the bot to critique the video."""
    object_string = [
        {"type": "text", "text": settings.ANALYSIS_PROMPT},
        {"type": "file", "file_url": video_url},
    ]
    return {
        "bot_id": settings.COZE_BOT_ID,
        "user_id": user_id or settings.DEFAULT_USER_ID,
        "stream": True,
        "auto_save_history": True,
        "additional_messages": [
            {
                "role": "user",
                "content": json.dumps(object_string, ensure_ascii=False),
                "content_type": "object_string",
            }
        ],
    }


class CozeService:
    """Sends analysis requests to Coze and returns the raw SSE body."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        # Tests inject an httpx.MockTransport here
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def check_video_url(self, video_url: str) -> bool:
        """HEAD the video URL; the upstream bot has to be able to fetch it."""
        try:
            async with self._client(10.0) as client:
                response = await client.head(video_url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("Could not check video URL %s: %s", video_url, e)
            return False
        if response.is_error:
            logger.warning("Video URL %s may be unreachable (status %d)", video_url, response.status_code)
            return False
        return True

    async def analyze_video(self, video_url: str, user_id: str | None = None) -> str:
        """Post the chat request and read the whole streamed answer."""
        settings = self.settings
        if not settings.coze_configured:
            raise ConfigurationError(config_status=settings.coze_status())

        payload = build_chat_payload(settings, video_url, user_id)
        headers = {
            "Authorization": f"Bearer {settings.COZE_ACCESS_TOKEN}",
            "Content-Type": "application/json",
        }
        logger.info(
            "Calling Coze API %s (bot %s, token %s...)",
            settings.COZE_API_URL,
            settings.COZE_BOT_ID,
            settings.COZE_ACCESS_TOKEN[:10],
        )

        try:
            async with self._client(settings.COZE_TIMEOUT_SECONDS) as client:
                async with client.stream("POST", settings.COZE_API_URL, json=payload, headers=headers) as response:
                    body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError as e:
            raise UpstreamRequestError(f"Coze API 错误: {e}") from e

        if response.is_error:
            try:
                data = json.loads(body)
            except ValueError:
                data = body
            message = (data.get("msg") or data.get("message")) if isinstance(data, dict) else None
            raise UpstreamRequestError(
                f"Coze API 错误: {response.status_code} - {message or response.reason_phrase}",
                status=response.status_code,
                data=data,
            )

        logger.info("Coze API responded %d with %d chars", response.status_code, len(body))
        return body
