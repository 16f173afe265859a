from __future__ import annotations

import pytest

from adminguard.core.config.models import SessionsConfig, ThreatsConfig
from adminguard.core.sessions.registry import SessionRegistry
from adminguard.core.threats.monitor import ThreatMonitor
from tests.helpers.fakes import FakeClock, RecordingAudit


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def registry(clock, audit):
    return SessionRegistry(cfg=SessionsConfig(max_concurrent_sessions=3, session_timeout_seconds=1800), audit=audit, now=clock)


@pytest.fixture
def monitor(clock, audit):
    return ThreatMonitor(cfg=ThreatsConfig(), audit=audit, now=clock)
