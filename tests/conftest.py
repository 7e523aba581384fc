"""Shared pytest fixtures for the compliance harness tests."""

import re
import threading
import time
from typing import Callable, Dict, List, Tuple

import pytest
import requests

from rwcompliance.capture.endpoint import ScriptedEndpoint, ScriptedResponse
from rwcompliance.capture.scrape import ScrapeTarget
from rwcompliance.client.remote_write import RemoteWriteClient
from rwcompliance.scenario.orchestrator import LaunchOptions
from rwcompliance.utils.config import ClientConfig, Config, ScenarioConfig
from rwcompliance.wire.builder import RequestBuilder
from rwcompliance.wire.models import ProtocolVersion

_LINE_RE = re.compile(
    r"^(?P<name>[a-zA-Z_:][a-zA-Z0-9_:]*)(?:\{(?P<labels>[^}]*)\})?\s+(?P<value>\S+)"
)
_LABEL_RE = re.compile(r'([a-zA-Z_][a-zA-Z0-9_]*)="((?:[^"\\]|\\.)*)"')

BASE_TS = 1_700_000_000_000


def parse_exposition(text: str) -> List[Tuple[Dict[str, str], float]]:
    """Minimal exposition parser, enough for the fake sender."""
    out = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            continue
        labels = {"__name__": m.group("name")}
        labels.update(_LABEL_RE.findall(m.group("labels") or ""))
        out.append((labels, float(m.group("value"))))
    return out


def make_fake_sender(
    interval: float = 0.02,
    retry_delay: float = 0.02,
    user_agent: str = "fake-sender/1.0",
) -> Callable[[LaunchOptions, threading.Event], None]:
    """A tiny conforming sender: scrape, send, retry 5xx with growing delay, drop 4xx."""

    def launch(options: LaunchOptions, stop: threading.Event) -> None:
        session = requests.Session()
        client = RemoteWriteClient(
            ClientConfig(
                url=options.remote_write_url,
                user_agent=user_agent,
                timeout_seconds=2.0,
                retry_attempts=1,
            ),
            session=session,
        )
        scrape_url = f"http://{options.scrape_target_host_port}/metrics"
        tick = 0
        while not stop.is_set():
            try:
                text = session.get(scrape_url, timeout=2).text
            except requests.RequestException:
                break
            builder = RequestBuilder(version=options.version)
            timestamp = int(time.time() * 1000) + tick
            tick += 1
            for labels, value in parse_exposition(text):
                builder.add_sample(labels, value, timestamp)
            message = builder.build()

            delay = retry_delay
            while not stop.is_set():
                try:
                    outcome = client.send(message)
                except requests.RequestException:
                    return
                if outcome.status_code // 100 != 5:
                    break
                stop.wait(delay)
                delay *= 2
            stop.wait(interval)
        client.close()

    return launch


@pytest.fixture
def fake_sender():
    return make_fake_sender()


@pytest.fixture
def sender_factory():
    """Build fake senders with non-default timing or user agent."""
    return make_fake_sender


@pytest.fixture
def fast_config() -> Config:
    """Config with short timeouts for in-process scenarios."""
    return Config(scenario=ScenarioConfig(timeout_seconds=5.0, poll_interval_seconds=0.01, stop_grace_seconds=1.0))


@pytest.fixture
def endpoint_factory():
    """Start ScriptedEndpoints and stop them after the test."""
    started: List[ScriptedEndpoint] = []

    def _make(responses=(ScriptedResponse(),), version=ProtocolVersion.V2, **kwargs) -> ScriptedEndpoint:
        ep = ScriptedEndpoint(responses=responses, version=version, **kwargs)
        ep.start()
        started.append(ep)
        return ep

    yield _make
    for ep in started:
        ep.stop()


@pytest.fixture
def scrape_target():
    target = ScrapeTarget("test_metric 1\n")
    target.start()
    yield target
    target.stop()
