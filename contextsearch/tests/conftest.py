"""Shared fixtures: fake process runners, a controllable clock, configs."""

import asyncio
from typing import Dict, List, Optional, Union

import pytest

from contextsearch.daemon.automation import ProcessOutput
from contextsearch.daemon.config import Config


class FakeRunner:
    """Stands in for run_process; answers by program name or first two args."""

    def __init__(self,
                 outputs: Optional[Dict[str, Union[str, ProcessOutput]]] = None,
                 error: Optional[BaseException] = None,
                 delay: float = 0.0):
        self.outputs = outputs or {}
        self.error = error
        self.delay = delay
        self.calls: List[List[str]] = []

    async def __call__(self, args, timeout, max_output_bytes=None):
        self.calls.append(list(args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        key = " ".join(args[:2])
        output = self.outputs.get(key, self.outputs.get(args[0], ""))
        if isinstance(output, ProcessOutput):
            return output
        return ProcessOutput(stdout=output)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_runner():
    return FakeRunner


@pytest.fixture
def config(tmp_path):
    """Config that never touches the user's home directory."""
    return Config(plugins_dir=tmp_path / "plugins")
