import sys
import os

import pytest

# Ensure the project root is in sys.path so `from speech_coach.main import app` works
# with relative imports inside the speech_coach package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from speech_coach.config import Settings  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    """Settings with Coze configured and uploads going to a temp dir."""
    return Settings(
        COZE_ACCESS_TOKEN="pat_test_token_0123456789",
        COZE_BOT_ID="7400000000000000001",
        COZE_API_URL="https://coze.test/v3/chat",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        PUBLIC_BASE_URL="http://testserver",
    )


@pytest.fixture
def unconfigured_settings(tmp_path):
    return Settings(
        COZE_ACCESS_TOKEN="",
        COZE_BOT_ID="",
        UPLOAD_DIR=str(tmp_path / "uploads"),
    )
