"""
Pytest configuration for SceneCast tests.

Tests never see the developer's .env file or SC_* variables, and timing
tests run on a fake clock whose sleep advances time instantly.
"""

import asyncio
import os

import pytest

from scenecast import prompts
from scenecast.config import config


class FakeClock:
    """Monotonic clock stand-in; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Hide SC_* variables and any .env file from tests."""
    for key in list(os.environ):
        if key.startswith("SC_") or key == "OPENAI_API_KEY":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_env_file", None)
    config.reload()
    prompts.reload_prompts()
    yield
    prompts.reload_prompts()


@pytest.fixture
def clock():
    return FakeClock()
