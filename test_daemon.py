"""Tests for the scheduler daemon and its HTTP control surface."""

import threading
import time
from unittest.mock import MagicMock

import pytest
from prometheus_client import CollectorRegistry

from alert_config import TEST_MESSAGE_TITLE
from conftest import HOST
from metrics_store import NullMetricsStore, SQLiteMetricsStore
from prometheus_exporter import NullMetricsExporter, PrometheusExporter
from resource_monitor_daemon import MonitorDaemon, make_app, next_deadline, parse_args


def make_readers(ram=85):
    readers = MagicMock()
    readers.read_ram.return_value = ram
    readers.read_cpu.return_value = 95
    readers.read_disk.return_value = 10
    readers.read_swap.return_value = 0
    readers.read_load.return_value = 10
    readers.read_network.return_value = (0.0, 0.0)
    return readers


def make_notifier(success=True):
    notifier = MagicMock()
    notifier.enabled = True
    notifier.token_hint.return_value = '12345...vwxyz'
    notifier.send_message.return_value = (True, None) if success else (False, 'timeout')
    return notifier


def build_daemon(settings, readers=None, notifier=None, store=None, exporter=None):
    process_monitor = MagicMock()
    process_monitor.top_processes.return_value = '  - python          (12.5%)'
    process_monitor.disk_breakdown.return_value = '  - /var             4.0G'
    return MonitorDaemon(
        settings,
        readers=readers or make_readers(),
        notifier=notifier or make_notifier(),
        store=store or NullMetricsStore(),
        exporter=exporter or PrometheusExporter(registry=CollectorRegistry()),
        process_monitor=process_monitor,
        describe=lambda path: HOST,
    )


@pytest.fixture
def cpu_disabled(make_settings):
    return make_settings(cpu={'monitor': False})


class TestTick:
    def test_ram_breach_with_cpu_disabled(self, cpu_disabled):
        readers = make_readers(ram=85)
        notifier = make_notifier()
        daemon = build_daemon(cpu_disabled, readers=readers, notifier=notifier)

        result = daemon.run_tick_once()

        readers.read_cpu.assert_not_called()
        assert result['snapshot']['readings']['ram'] == 85
        assert result['snapshot']['readings']['cpu'] == 0
        assert result['alerts'] == [{'kind': 'ram', 'value': '85%', 'sent': True}]
        assert notifier.send_message.call_count == 1

        registry = daemon.exporter.registry
        assert registry.get_sample_value('system_ram_usage_percent') == 85
        assert registry.get_sample_value('system_cpu_usage_percent') == 0
        assert registry.get_sample_value('system_ram_alerts_total') == 1

    def test_repeat_breach_within_cooldown_not_resent(self, cpu_disabled):
        notifier = make_notifier()
        daemon = build_daemon(cpu_disabled, notifier=notifier)

        daemon.run_tick_once()
        second = daemon.run_tick_once()

        assert second['alerts'] == []
        assert notifier.send_message.call_count == 1

    def test_tick_exception_is_contained(self, settings):
        readers = make_readers(ram=10)
        readers.read_ram.side_effect = [RuntimeError('reader exploded'), 10]
        daemon = build_daemon(settings, readers=readers)

        assert daemon.run_tick_once() is None
        assert daemon.failed_ticks == 1
        assert daemon.run_tick_once() is not None
        assert daemon.tick_count == 1

    def test_status_file_written(self, settings):
        daemon = build_daemon(settings, readers=make_readers(ram=10))
        daemon.run_tick_once()

        with open(settings.status_file) as f:
            assert 'RAM: 10%' in f.read()

    def test_alerts_persisted(self, make_settings, tmp_path):
        settings = make_settings(cpu={'monitor': False})
        store = SQLiteMetricsStore(tmp_path / 'metrics.db')
        daemon = build_daemon(settings, store=store)

        daemon.run_tick_once()

        [alert] = daemon.get_recent_alerts(10)
        assert alert.alert_type == 'ram'
        assert alert.sent_successfully is True
        assert daemon.get_recent_metrics(10)[0].ram_usage == 85


class TestLifecycle:
    def test_failed_self_test_does_not_block_loop(self, cpu_disabled):
        notifier = make_notifier(success=False)
        daemon = build_daemon(cpu_disabled, readers=make_readers(ram=10), notifier=notifier)

        assert daemon.state == MonitorDaemon.IDLE
        assert daemon.start()
        deadline = time.monotonic() + 5
        while daemon.tick_count < 1 and time.monotonic() < deadline:
            time.sleep(0.05)
        daemon.stop()

        assert daemon.tick_count >= 1
        assert daemon.state == MonitorDaemon.STOPPED
        first_message = notifier.send_message.call_args_list[0][0][0]
        assert first_message.startswith(TEST_MESSAGE_TITLE)

    def test_start_twice_is_rejected(self, cpu_disabled):
        daemon = build_daemon(cpu_disabled, readers=make_readers(ram=10))
        daemon.start()
        try:
            assert daemon.start() is False
        finally:
            daemon.stop()

    def test_busy_tick_is_skipped(self, cpu_disabled):
        readers = make_readers(ram=10)
        daemon = build_daemon(cpu_disabled, readers=readers)

        daemon._tick_lock.acquire()
        try:
            assert daemon._scheduled_tick() is None
        finally:
            daemon._tick_lock.release()

        assert daemon.skipped_ticks == 1
        readers.read_ram.assert_not_called()
        assert daemon._scheduled_tick() is not None
        assert daemon.tick_count == 1

    def test_stop_waits_for_in_flight_tick(self, cpu_disabled):
        tick_started = threading.Event()

        def slow_send(text):
            if not text.startswith(TEST_MESSAGE_TITLE):
                tick_started.set()
                time.sleep(0.3)
            return True, None

        notifier = make_notifier()
        notifier.send_message.side_effect = slow_send
        store = MagicMock()
        store.enabled = True
        daemon = build_daemon(cpu_disabled, notifier=notifier, store=store)

        daemon.start()
        assert tick_started.wait(timeout=5)

        assert daemon.stop(timeout=0.01) is False
        store.close.assert_not_called()
        assert daemon.state == MonitorDaemon.RUNNING

        assert daemon.stop() is True
        calls = [name for name, _, _ in store.method_calls]
        assert calls.index('append_alert') < calls.index('close')
        assert daemon.state == MonitorDaemon.STOPPED
        notifier.close.assert_called_once()

    def test_status_report(self, settings):
        daemon = build_daemon(settings, readers=make_readers(ram=10))
        daemon.run_tick_once()
        status = daemon.get_status()

        assert status['state'] == 'idle'
        assert status['ticks']['completed'] == 1
        assert status['alert_cooldown'] == 600
        assert status['database'] == {'enabled': False, 'backend': 'none'}


class TestControlApp:
    @pytest.fixture
    def client(self, cpu_disabled):
        daemon = build_daemon(cpu_disabled)
        return make_app(daemon).test_client()

    def test_index(self, client):
        resp = client.get('/')
        assert resp.status_code == 200
        assert b'Resource Monitor API is running' in resp.data

    def test_status_returns_fresh_snapshot(self, client):
        body = client.get('/status').get_json()

        assert body['status'] == 'ok'
        assert body['system']['hostname'] == 'test-server'
        assert body['metrics']['ram'] == 85

    def test_manual_tick_and_metrics(self, client):
        tick = client.post('/api/tick')
        assert tick.status_code == 200
        assert tick.get_json()['alerts'][0]['kind'] == 'ram'

        metrics = client.get('/metrics')
        assert metrics.status_code == 200
        assert b'system_ram_usage_percent 85.0' in metrics.data

    def test_health_degraded_when_scheduler_not_running(self, client):
        resp = client.get('/health')
        assert resp.status_code == 503
        assert resp.get_json()['status'] == 'degraded'

    def test_failed_test_message(self, settings):
        daemon = build_daemon(settings, notifier=make_notifier(success=False))
        resp = make_app(daemon).test_client().get('/test-telegram')

        assert resp.status_code == 500
        assert resp.get_json()['status'] == 'error'

    def test_metrics_route_disabled(self, settings):
        daemon = build_daemon(settings, exporter=NullMetricsExporter())
        assert make_app(daemon).test_client().get('/metrics').status_code == 404

    def test_recent_alerts_empty_without_store(self, client):
        body = client.get('/api/alerts/recent?limit=5').get_json()
        assert body == {'status': 'ok', 'alerts': []}


def test_parse_args():
    args = parse_args(['--once', '--check-interval', '30', '-p', '9000'])

    assert args.once is True
    assert args.check_interval == 30
    assert args.control_port == 9000
    assert args.config is None


@pytest.mark.parametrize('now, expected', [
    (30, (60, 0)),
    (60, (60, 0)),
    (75, (120, 1)),
    (200, (240, 3)),
])
def test_next_deadline_drops_missed_slots(now, expected):
    assert next_deadline(0, now, 60) == expected
