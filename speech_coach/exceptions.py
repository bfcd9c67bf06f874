"""Domain exceptions for upload handling and the upstream analysis call.

Each exception carries a stable `error_code` so the API layer can map it to
a JSON error body without string matching.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class SpeechCoachError(Exception):
    """Base class for speech coach domain errors."""

    message: str
    error_code: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class ConfigurationError(SpeechCoachError):
    def __init__(
        self,
        message: str = "Coze API配置不完整，请检查环境变量",
        config_status: dict | None = None,
    ) -> None:
        super().__init__(message=message, error_code="not_configured")
        self.config_status = config_status


class UploadValidationError(SpeechCoachError):
    def __init__(self, message: str = "不支持的文件") -> None:
        super().__init__(message=message, error_code="invalid_upload")


class UpstreamRequestError(SpeechCoachError):
    """The chat service answered with an error status or could not be reached."""

    def __init__(
        self,
        message: str = "Coze API 请求失败",
        status: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message=message, error_code="upstream_failed")
        self.status = status
        self.data = data
