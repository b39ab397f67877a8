"""Shared fixtures: isolated settings, a fixed host identity and snapshot builders."""

import json
from datetime import datetime, timezone

import pytest

from config_store import load_settings
from snapshot import make_snapshot
from system_info import HostIdentity

HOST = HostIdentity(
    hostname='test-server',
    ip='192.168.1.100',
    os='Ubuntu 22.04',
    kernel='5.15.0-91-generic',
    uptime='1d 2h 3m',
    cpu_count=4,
    total_ram_gb=16.0,
    total_disk_gb=100.0,
)

TICK_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_settings(tmp_path):
    """Settings loaded from a temp config dir, with the status file kept under tmp_path"""
    config_file = tmp_path / 'config.json'
    config_file.write_text(json.dumps({
        'monitoring': {'status_file': str(tmp_path / 'status.tmp')},
    }))

    def _make(**overrides):
        return load_settings(config_file=config_file, overrides=overrides)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


def snapshot_of(timestamp=TICK_TIME, host=HOST, **readings):
    return make_snapshot(readings, host, timestamp)
