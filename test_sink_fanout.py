"""Tests for the per-tick sinks and the Prometheus exporter."""

from unittest.mock import MagicMock

import pytest
from prometheus_client import CollectorRegistry

from conftest import snapshot_of
from prometheus_exporter import NullMetricsExporter, PrometheusExporter, create_exporter
from sink_fanout import SinkFanout, StatusFileWriter, format_status, metric_record


@pytest.fixture
def exporter():
    return PrometheusExporter(disk_path='/', registry=CollectorRegistry())


class TestStatusFile:
    def test_format_lists_enabled_resources(self, settings):
        snapshot = snapshot_of(ram=85, cpu=40, disk=70, swap=0, load=50)

        assert format_status(snapshot, settings) == (
            "Last check: 2026-01-01 12:00:00\n"
            "RAM: 85%\n"
            "CPU: 40%\n"
            "Disk (/): 70%\n"
            "Load: 2.00 (per core: 0.50)\n"
        )

    def test_format_includes_swap_and_network_when_active(self, make_settings):
        settings = make_settings(cpu={'monitor': False}, network={'monitor': True, 'interface': 'eth0'})
        snapshot = snapshot_of(ram=10, swap=12, network_rx=7.994, network_tx=0.5)
        lines = format_status(snapshot, settings).splitlines()

        assert "CPU: 0%" not in lines
        assert "Swap: 12%" in lines
        assert lines[-1] == "Network (eth0): RX: 7.99 Mbps, TX: 0.50 Mbps"

    def test_writer_overwrites_in_place(self, tmp_path):
        path = tmp_path / 'status.tmp'
        writer = StatusFileWriter(str(path))

        writer.write_status("first\n")
        writer.write_status("second\n")

        assert path.read_text() == "second\n"
        assert [p.name for p in tmp_path.iterdir()] == ['status.tmp']


class TestPrometheusExporter:
    def test_gauges_and_counters(self, exporter):
        exporter.set_gauge('ram', 85)
        exporter.set_gauge('disk', 70)
        exporter.set_gauge('network_rx', 7.5)
        exporter.inc_counter('ram')
        exporter.inc_counter('ram')

        registry = exporter.registry
        assert registry.get_sample_value('system_ram_usage_percent') == 85
        assert registry.get_sample_value('system_disk_usage_percent', {'path': '/'}) == 70
        assert registry.get_sample_value('system_network_rx_mbps', {'interface': 'all'}) == 7.5
        assert registry.get_sample_value('system_ram_alerts_total') == 2

    def test_render_exposition_text(self, exporter):
        exporter.set_gauge('cpu', 12)
        body = exporter.render()

        assert b'system_cpu_usage_percent 12.0' in body
        assert b'system_cpu_alerts_total' in body

    def test_unknown_gauge(self, exporter):
        with pytest.raises(KeyError):
            exporter.set_gauge('gpu', 1)

    def test_disabled_exporter(self, settings):
        assert isinstance(create_exporter(settings), NullMetricsExporter)


class TestSinkFanout:
    def test_publish_updates_every_sink(self, settings, exporter):
        store = MagicMock()
        store.enabled = True
        fanout = SinkFanout(settings, store, exporter)

        results = fanout.publish(snapshot_of(ram=85, cpu=40, disk=70, load=50))

        assert results == {'store': True, 'prometheus': True, 'status_file': True}
        record = store.append_metric.call_args[0][0]
        assert record.ram_usage == 85
        assert record.extra_data == {'uptime': '1d 2h 3m', 'os': 'Ubuntu 22.04'}
        assert exporter.registry.get_sample_value('system_load_average_per_core') == 0.5
        with open(settings.status_file) as f:
            assert f.readline() == "Last check: 2026-01-01 12:00:00\n"

    def test_disabled_kind_gauge_untouched(self, make_settings, exporter):
        settings = make_settings(cpu={'monitor': False})
        SinkFanout(settings, exporter=exporter).publish(snapshot_of(ram=85, cpu=55))

        assert exporter.registry.get_sample_value('system_ram_usage_percent') == 85
        assert exporter.registry.get_sample_value('system_cpu_usage_percent') == 0

    def test_failing_sink_does_not_block_others(self, settings, exporter):
        store = MagicMock()
        store.enabled = True
        store.append_metric.side_effect = RuntimeError('disk I/O error')
        status_writer = MagicMock()
        status_writer.write_status.side_effect = OSError('read-only file system')

        results = SinkFanout(settings, store, exporter, status_writer).publish(snapshot_of(ram=42))

        assert results == {'store': False, 'prometheus': True, 'status_file': False}
        assert exporter.registry.get_sample_value('system_ram_usage_percent') == 42

    def test_disabled_sinks_are_skipped(self, settings):
        results = SinkFanout(settings, status_writer=MagicMock()).publish(snapshot_of(ram=1))
        assert results == {'status_file': True}

    def test_metric_record_from_snapshot(self):
        record = metric_record(snapshot_of(ram=85, network_rx=1.5))

        assert record.hostname == 'test-server'
        assert record.ip_address == '192.168.1.100'
        assert record.network_rx == 1.5
        assert record.timestamp.microsecond == 0
