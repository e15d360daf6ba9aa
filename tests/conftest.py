"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides test settings, the echo worker command and service handlers.
"""

import sys
from pathlib import Path
from typing import Generator, List
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from pydantic_settings import SettingsConfigDict

from universal_renderer.config import settings as settings_module
from universal_renderer.config.settings import Settings
from universal_renderer.api.main import create_app
from universal_renderer.service.handlers import RenderHandlers

from tests.fixtures.apps import build_handlers

FIXTURES_DIR = Path(__file__).parent / "fixtures"

BASIC_TEMPLATE = (
    "<html><head><!-- SSR_HEAD --></head><body><!-- SSR_BODY --></body></html>"
)


# Test settings override
class TestSettings(Settings):
    """Test-specific settings."""

    environment: str = "testing"
    debug: bool = True
    server_url: str = ""
    timeout: float = 1.0
    process_pool_size: int = 2  # Smaller pool for tests
    process_checkout_timeout: float = 1.0
    process_read_timeout: float = 2.0
    log_level: str = "DEBUG"

    model_config = SettingsConfigDict(env_file=".env.test", env_prefix="SSR_TEST_")


@pytest.fixture(scope="session")
def test_settings() -> TestSettings:
    """Test settings fixture."""
    return TestSettings()


@pytest.fixture(scope="session", autouse=True)
def override_settings(test_settings: TestSettings):
    """Override application settings for testing."""
    with patch.object(settings_module, "settings", test_settings):
        yield test_settings


@pytest.fixture(scope="session")
def echo_worker_command() -> List[str]:
    """Argv of the stand-alone echo worker script."""
    return [sys.executable, "-u", str(FIXTURES_DIR / "echo_worker.py")]


@pytest.fixture
def template() -> str:
    """Template carrying both markers."""
    return BASIC_TEMPLATE


@pytest.fixture
def handlers() -> RenderHandlers:
    """Render handlers of the fixture application."""
    return build_handlers()


@pytest.fixture
def service_client(
    handlers: RenderHandlers, test_settings: TestSettings
) -> Generator[TestClient, None, None]:
    """FastAPI test client for the rendering service."""
    app = create_app(handlers, test_settings)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
