#!/usr/bin/env python3
# process_monitor.py
"""
Top resource consumers for alert messages:
top processes by RAM, and the largest entries under the disk path
"""

import os
import subprocess
import psutil
import logging

logger = logging.getLogger('resmon.processes')

DU_TIMEOUT = 30  # seconds


class ProcessMonitor:
    """Lists the processes and directories using the most resources"""

    def __init__(self, disk_path='/'):
        self.disk_path = disk_path

    def _collect(self):
        processes = []
        for proc in psutil.process_iter(['pid', 'name', 'memory_percent']):
            try:
                pinfo = proc.info
                processes.append({
                    'pid': pinfo['pid'],
                    'name': pinfo.get('name') or 'Unknown',
                    'memory_percent': pinfo.get('memory_percent') or 0.0,
                })
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                pass
        return processes

    def top_processes(self, count=3):
        """Top `count` processes by memory usage, one '  - name            (12.3%)' line each"""
        try:
            ranked = sorted(self._collect(), key=lambda p: p['memory_percent'], reverse=True)[:count]
        except Exception as e:
            logger.error(f"[ProcessMonitor] Error getting top processes: {e}")
            return "Could not get RAM process information"

        return '\n'.join(f"  - {p['name']:<15} ({p['memory_percent']:.1f}%)" for p in ranked)

    def disk_breakdown(self, count=3):
        """Largest entries directly under the disk path, as reported by `du -h`"""
        base = self.disk_path.rstrip('/') or '/'
        try:
            entries = [os.path.join(base, name) for name in os.listdir(base)]
        except OSError as e:
            logger.error(f"[ProcessMonitor] Cannot list {base}: {e}")
            return 'Could not get disk usage information'

        try:
            result = subprocess.run(
                ['du', '-sh', *entries],
                capture_output=True,
                text=True,
                timeout=DU_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"[ProcessMonitor] du failed: {e}")
            return 'Could not get disk usage information'

        # du exits 1 when some entries are unreadable; partial output is still usable
        if result.returncode not in (0, 1):
            return 'Could not get disk usage information'

        sized = []
        for line in result.stdout.splitlines():
            parts = line.split('\t')
            if len(parts) != 2:
                continue
            sized.append((_parse_size(parts[0]), parts[0], os.path.basename(parts[1])))

        sized.sort(reverse=True)
        return '\n'.join(f"  - /{name:<15} {size}" for _, size, name in sized[:count])


_UNITS = {'K': 1, 'M': 1024, 'G': 1024 ** 2, 'T': 1024 ** 3, 'P': 1024 ** 4}


def _parse_size(text):
    """'1.5G' -> size in KiB, for sorting du -h output"""
    text = text.strip()
    if not text:
        return 0.0
    unit = text[-1].upper()
    try:
        if unit in _UNITS:
            return float(text[:-1]) * _UNITS[unit]
        return float(text) / 1024
    except ValueError:
        return 0.0
