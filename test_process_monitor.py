"""Tests for the top-consumer listings attached to alerts."""

import subprocess
from unittest.mock import MagicMock, PropertyMock, patch

import psutil

from process_monitor import ProcessMonitor, _parse_size


def proc(pid, name, memory_percent):
    p = MagicMock()
    p.info = {'pid': pid, 'name': name, 'memory_percent': memory_percent}
    return p


def vanished_proc():
    p = MagicMock()
    type(p).info = PropertyMock(side_effect=psutil.NoSuchProcess(999))
    return p


class TestTopProcesses:
    def test_ranked_by_memory(self):
        procs = [proc(1, 'sshd', 0.4), proc(2, 'postgres', 22.0), vanished_proc(),
                 proc(3, 'python', 12.5), proc(4, None, None)]
        with patch('process_monitor.psutil.process_iter', return_value=procs) as process_iter:
            text = ProcessMonitor().top_processes(count=2)

        assert text.splitlines() == [
            '  - postgres        (22.0%)',
            '  - python          (12.5%)',
        ]
        assert process_iter.call_args[0][0] == ['pid', 'name', 'memory_percent']

    def test_listing_failure_gives_placeholder(self):
        with patch('process_monitor.psutil.process_iter', side_effect=psutil.AccessDenied()):
            assert ProcessMonitor().top_processes() == 'Could not get RAM process information'


class TestDiskBreakdown:
    def test_largest_entries_first(self):
        du = subprocess.CompletedProcess(
            args=['du'], returncode=1,
            stdout='4.0G\t/var\n512M\t/home\n12K\t/srv\n1.2G\t/usr\n',
        )
        with patch('process_monitor.os.listdir', return_value=['var', 'home', 'srv', 'usr']), \
                patch('process_monitor.subprocess.run', return_value=du):
            text = ProcessMonitor('/').disk_breakdown(count=2)

        assert text.splitlines() == ['  - /var             4.0G', '  - /usr             1.2G']

    def test_unreadable_path(self):
        with patch('process_monitor.os.listdir', side_effect=PermissionError('denied')):
            assert ProcessMonitor('/data').disk_breakdown() == 'Could not get disk usage information'

    def test_parse_size_units(self):
        assert _parse_size('1.5G') == 1.5 * 1024 ** 2
        assert _parse_size('') == 0.0
        assert _parse_size('abc') == 0.0
