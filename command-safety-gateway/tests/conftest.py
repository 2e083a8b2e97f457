"""Shared fixtures for Command Safety Gateway tests.

Fixtures are auto-injected by pytest. Helper functions are in helpers.py.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory and tests directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from command_gateway import CommandGateway
from gateway_settings import AppSettings, SettingsService


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_audit_dir(tmp_path):
    return str(tmp_path / "audit")


@pytest.fixture
def repo_root(tmp_path):
    """Parent of the configured truth repo; the default working directory."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def settings_service(tmp_path, repo_root):
    initial = AppSettings(
        vault_path=str(tmp_path / "vault"),
        truth_repo_path=str(repo_root / ".truth"),
        api_mode="local",
        api_url="https://example.invalid",
        default_risk_profile="medium",
        terminal_font_size=14,
        auto_save_audit=True,
    )
    return SettingsService(path=tmp_path / "config" / "settings.json", initial=initial)


@pytest.fixture
def make_gateway(tmp_audit_dir, settings_service):
    """Factory fixture to create CommandGateway instances with configurable options."""
    def _make(audit_enabled=None, session_id="test_session", tool_executable="truthgit"):
        return CommandGateway(
            session_id=session_id,
            audit_dir=tmp_audit_dir,
            settings=settings_service,
            audit_enabled=audit_enabled,
            tool_executable=tool_executable,
        )
    return _make


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()
