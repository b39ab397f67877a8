#!/usr/bin/env python3
# resource_readers.py
"""
Metric readers - one per resource kind.
Every reader returns a number and never raises; a failed read is logged
and degrades to 0 so one broken source never blocks a tick.
"""

import time
import logging
from typing import Optional, Tuple

import psutil

logger = logging.getLogger('resmon.readers')

NETWORK_SAMPLE_INTERVAL = 1  # seconds between the two network samples


def bytes_to_mbps(delta_bytes, seconds=NETWORK_SAMPLE_INTERVAL):
    """Convert a byte delta over `seconds` to megabits per second"""
    return max(0.0, delta_bytes * 8 / 1024 / 1024 / seconds)


class ResourceReaders:
    """Reads current RAM, CPU, disk, swap, load and network usage via psutil"""

    def __init__(self, disk_path: str = '/', network_interface: Optional[str] = None):
        self.disk_path = disk_path
        self.network_interface = network_interface

        # First cpu_percent(interval=None) call only primes the counters
        try:
            psutil.cpu_percent(interval=None)
        except Exception as e:
            logger.warning(f"[Readers] Could not prime CPU counters: {e}")

    def read_ram(self) -> int:
        try:
            mem = psutil.virtual_memory()
            return round(mem.used / mem.total * 100)
        except Exception as e:
            logger.warning(f"[Readers] Error checking RAM usage: {e}")
            return 0

    def read_cpu(self) -> int:
        try:
            return round(psutil.cpu_percent(interval=None))
        except Exception as e:
            logger.warning(f"[Readers] Error checking CPU usage: {e}")
            return 0

    def read_disk(self) -> int:
        try:
            return round(psutil.disk_usage(self.disk_path).percent)
        except Exception as e:
            logger.warning(f"[Readers] Error checking disk usage ({self.disk_path}): {e}")
            return 0

    def read_swap(self) -> int:
        try:
            swap = psutil.swap_memory()
            if swap.total == 0:
                return 0
            return round(swap.used / swap.total * 100)
        except Exception as e:
            logger.warning(f"[Readers] Error checking swap usage: {e}")
            return 0

    def read_load(self) -> int:
        """1-minute load average divided by core count, as a percentage"""
        try:
            load = psutil.getloadavg()[0]
            cpu_count = psutil.cpu_count(logical=True) or 1
            return round(load / cpu_count * 100)
        except Exception as e:
            logger.warning(f"[Readers] Error checking load average: {e}")
            return 0

    def read_network(self) -> Tuple[float, float]:
        """
        Receive and transmit rates in Mbps.

        Takes two counter samples NETWORK_SAMPLE_INTERVAL apart, so this
        blocks for about a second. Returns (0, 0) if either sample fails.
        """
        try:
            first = self._net_counters()
            time.sleep(NETWORK_SAMPLE_INTERVAL)
            second = self._net_counters()

            rx_rate = bytes_to_mbps(second.bytes_recv - first.bytes_recv)
            tx_rate = bytes_to_mbps(second.bytes_sent - first.bytes_sent)
            return rx_rate, tx_rate
        except Exception as e:
            logger.warning(f"[Readers] Error checking network usage: {e}")
            return 0.0, 0.0

    def _net_counters(self):
        if not self.network_interface:
            return psutil.net_io_counters()
        per_nic = psutil.net_io_counters(pernic=True)
        if self.network_interface not in per_nic:
            raise KeyError(f"network interface {self.network_interface!r} not found")
        return per_nic[self.network_interface]
