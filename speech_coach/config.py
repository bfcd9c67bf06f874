"""Application settings and the upstream protocol constants."""

import json
from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROMPT = (
    "请帮我分析这个医学演讲视频，并提供详细的分析和建议。请重点关注："
    "1. 语速和语调 2. 专业术语使用 3. 逻辑结构 4. 时间控制 5. 具体改进建议。"
)


@dataclass(frozen=True)
class ProtocolConfig:
    """Field names and markers shared with the upstream chat service.

    These must match the upstream payloads byte for byte.
    """

    structured_field: str = "output"
    text_field: str = "content"
    nested_field: str = "content"
    data_prefix: str = "data:"
    done_sentinel: str = "[DONE]"
    download_link_marker: str = "下载链接："
    finish_msg_type: str = "generate_answer_finish"
    error_prefix: str = "biz error:"
    adjacent_dup_min_length: int = 6
    global_dup_min_length: int = 8


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "医学演讲教练助手"
    LOG_LEVEL: str = "INFO"

    # Coze chat API
    COZE_ACCESS_TOKEN: str = ""
    COZE_BOT_ID: str = ""
    COZE_API_URL: str = "https://api.coze.cn/v3/chat"
    COZE_TIMEOUT_SECONDS: float = 600.0
    COZE_SIZE_LIMIT: int = 52 * 1024 * 1024
    ANALYSIS_PROMPT: str = DEFAULT_PROMPT
    DEFAULT_USER_ID: str = "123456789"

    # Uploads
    UPLOAD_DIR: str = "uploads"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    MAX_FILE_SIZE: int = 500 * 1024 * 1024
    ALLOWED_VIDEO_TYPES: list[str] | str = [
        "video/mp4",
        "video/avi",
        "video/mov",
        "video/wmv",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-ms-wmv",
    ]

    # Text cleanup
    DOWNLOAD_LINK_MARKER: str = "下载链接："
    ADJACENT_DUP_MIN_LENGTH: int = 6
    GLOBAL_DUP_MIN_LENGTH: int = 8

    @field_validator("ALLOWED_VIDEO_TYPES", mode="before")
    @classmethod
    def assemble_video_types(cls, v: object) -> list[str]:
        """Allow list, CSV string, or JSON array string for video types."""
        if isinstance(v, list):
            return [str(i).strip() for i in v]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError as e:
                    raise ValueError("ALLOWED_VIDEO_TYPES must be a CSV list or JSON array string") from e
                if not isinstance(parsed, list):
                    raise ValueError("ALLOWED_VIDEO_TYPES JSON must be a list")
                return [str(i).strip() for i in parsed]
            return [i.strip() for i in s.split(",") if i.strip()]
        raise ValueError("Invalid ALLOWED_VIDEO_TYPES type; expected str or list[str]")

    @property
    def coze_configured(self) -> bool:
        return bool(self.COZE_ACCESS_TOKEN and self.COZE_BOT_ID)

    def protocol(self) -> ProtocolConfig:
        """Build the protocol constants, applying the overridable ones."""
        return ProtocolConfig(
            download_link_marker=self.DOWNLOAD_LINK_MARKER,
            adjacent_dup_min_length=self.ADJACENT_DUP_MIN_LENGTH,
            global_dup_min_length=self.GLOBAL_DUP_MIN_LENGTH,
        )

    def coze_status(self) -> dict:
        """Coze credential flags with the token reduced to a short prefix."""
        token = self.COZE_ACCESS_TOKEN
        return {
            "hasAccessToken": bool(token),
            "hasBotId": bool(self.COZE_BOT_ID),
            "isConfigured": self.coze_configured,
            "accessTokenPrefix": f"{token[:10]}..." if token else "未配置",
            "botId": self.COZE_BOT_ID or "未配置",
        }

    def status(self) -> dict:
        """Configuration presence flags; never exposes secrets."""
        coze = self.coze_status()
        return {
            "coze": coze,
            "storage": {
                "uploadMethod": "Local",
                "uploadDir": self.UPLOAD_DIR,
                "publicBaseUrl": self.PUBLIC_BASE_URL,
            },
            "overall": {
                "cozeConfigured": coze["isConfigured"],
                "fullyConfigured": coze["isConfigured"],
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
