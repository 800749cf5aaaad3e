"""
HLSRelay Test Configuration

Shared fixtures and configuration for all tests.
"""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from hlsrelay.channels import ChannelDescriptor
from hlsrelay.config import HLSRelayConfig
from hlsrelay.events.bus import EventBus


# ============ Configuration Fixtures ============


@pytest.fixture
def relay_config(tmp_path: Path) -> HLSRelayConfig:
    """Configuration with every path inside a temporary directory."""
    return HLSRelayConfig(
        channels={"count": 3, "source_host": "127.0.0.1", "udp_base_port": 5000},
        paths={
            "output_dir": str(tmp_path / "streams"),
            "log_dir": str(tmp_path / "logs"),
        },
        supervisor={"backoff_base": 0, "backoff_max": 0, "stable_after": 0},
        logging={"file": str(tmp_path / "logs" / "error.log")},
    )


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
server:
  host: "127.0.0.1"
  port: 9000

channels:
  count: 4
  source_host: "239.0.0.1"
  udp_base_port: 3000

events:
  inbox_size: 5

logging:
  level: "DEBUG"
"""
    )
    return config_file


# ============ Core Fixtures ============


@pytest.fixture
def bus() -> EventBus:
    """Event bus with the default inbox size."""
    return EventBus(inbox_size=10)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "streams"
    path.mkdir()
    return path


@pytest.fixture
def make_descriptor(tmp_path: Path, output_dir: Path):
    """Factory for channel descriptors writing into ``output_dir``."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir(exist_ok=True)

    def _make(index: int) -> ChannelDescriptor:
        return ChannelDescriptor(
            index=index,
            source_address=f"udp://127.0.0.1:{5000 + index}?timeout=60000000",
            output_dir=output_dir,
            manifest_path=output_dir / f"stream{index}.m3u8",
            log_path=log_dir / f"channel_{index}.log",
        )

    return _make


# ============ Environment Fixtures ============


@pytest.fixture(autouse=True)
def clean_environment() -> Generator[None, None, None]:
    """Clean environment variables and the cached config for each test."""
    from hlsrelay import config as config_module

    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("HLSRELAY_"):
            del os.environ[key]
    config_module._config = None

    yield

    os.environ.clear()
    os.environ.update(original_env)
    config_module._config = None


# ============ Markers ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")


# ============ Application Fixtures ============


@pytest.fixture
def stub_engine():
    """Engine double that keeps every channel running until cancelled."""
    from tests.fixtures.engines import StubEngine

    return StubEngine()


@pytest.fixture
def app(relay_config: HLSRelayConfig, stub_engine):
    """Application wired to the stub engine."""
    from hlsrelay.main import create_app

    return create_app(relay_config, engine=stub_engine)


@pytest.fixture
def client(app) -> Generator:
    """Test client with the application lifespan running."""
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
