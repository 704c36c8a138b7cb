"""
Pytest configuration and fixtures for AI Permissions Layer tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import json
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from ai_permissions.approval import ApprovalLedger
from ai_permissions.schema import ApprovalSettings, EngineConfig


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    """Return a fake clock starting at a fixed time."""
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> ApprovalLedger:
    """Return an empty ledger driven by the fake clock."""
    return ApprovalLedger(ttl_seconds=3600, clock=clock)


@pytest.fixture
def sample_rules_document() -> dict:
    """Return a compiled rules document in the on-disk (camelCase) form."""
    return {
        "rules": [
            {"action": "block", "tool": "gmail.delete", "reason": "Never auto-delete emails"},
            {"action": "block", "tool": "gmail.batchDelete", "reason": "Never auto-delete emails"},
            {"action": "require_approval", "toolPattern": "^(exec|bash|process)$", "reason": "Ask before running commands"},
            {"action": "allow", "tool": "read", "reason": "Safe read-only operation"},
            {"action": "allow", "tool": "gmail.list", "intentPattern": "inbox", "reason": "Listing for inbox tasks"},
        ]
    }


@pytest.fixture
def rules_file(temp_dir: Path, sample_rules_document: dict) -> Path:
    """Write the sample rules to a JSON file and return its path."""
    path = temp_dir / "rules.json"
    path.write_text(json.dumps(sample_rules_document, indent=2))
    return path


@pytest.fixture
def engine_config(rules_file: Path) -> EngineConfig:
    """Return an engine config pointing at the sample rules, without the sweeper thread."""
    return EngineConfig(
        rules_path=rules_file,
        approval=ApprovalSettings(background_sweep=False),
    )


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a complete engine config YAML for testing."""
    return """
rules_path: ~/agent/rules.json
default_when_no_match: block
path_protection:
  enabled: true
  dangerous_tools:
    - write
    - edit
approval:
  ttl_seconds: 600
  resolved_ttl_seconds: null
  sweep_interval_seconds: 30
compiler:
  provider: ollama
  model: qwen2.5:7b
"""
