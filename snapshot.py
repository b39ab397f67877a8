#!/usr/bin/env python3
# snapshot.py
"""
Snapshot assembly - one immutable bundle of readings per tick
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Mapping

from alert_config import READING_KEYS
from system_info import HostIdentity, describe_host

logger = logging.getLogger('resmon.snapshot')


@dataclass(frozen=True)
class Snapshot:
    timestamp: datetime
    host: HostIdentity
    readings: Mapping[str, float]

    @property
    def epoch(self) -> float:
        return self.timestamp.timestamp()

    def reading(self, key):
        return self.readings.get(key, 0)

    def as_dict(self):
        return {
            "timestamp": self.timestamp.isoformat(),
            "host": self.host.as_dict(),
            "readings": dict(self.readings),
        }


def make_snapshot(readings, host, timestamp=None):
    """Build a Snapshot with every reading key present (missing keys -> 0)"""
    values = {key: 0 for key in READING_KEYS}
    values.update(readings)
    return Snapshot(
        timestamp=timestamp or datetime.now(timezone.utc),
        host=host,
        readings=MappingProxyType(values),
    )


class SnapshotAssembler:
    """
    Invokes the enabled readers once and assembles a Snapshot.

    Disabled readers are never called; their readings are 0.
    """

    def __init__(self, readers, settings, describe: Callable[..., HostIdentity] = describe_host):
        self.readers = readers
        self.settings = settings
        self.describe = describe

    def assemble(self) -> Snapshot:
        timestamp = datetime.now(timezone.utc)
        readings = {'ram': self.readers.read_ram()}

        if self.settings.is_enabled('cpu'):
            readings['cpu'] = self.readers.read_cpu()
        if self.settings.is_enabled('disk'):
            readings['disk'] = self.readers.read_disk()
        if self.settings.is_enabled('swap'):
            readings['swap'] = self.readers.read_swap()
        if self.settings.is_enabled('load'):
            readings['load'] = self.readers.read_load()
        if self.settings.is_enabled('network'):
            readings['network_rx'], readings['network_tx'] = self.readers.read_network()

        host = self.describe(self.settings.disk_path)
        snapshot = make_snapshot(readings, host, timestamp)
        logger.debug(f"[Snapshot] {dict(snapshot.readings)}")
        return snapshot
