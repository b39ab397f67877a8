"""Tests for metric and alert persistence."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import psycopg2
import psycopg2.extras
import pytest

from metrics_store import (
    AlertRecord, MetricRecord, NullMetricsStore, PostgresMetricsStore, SQLiteMetricsStore, create_store,
    record_timestamp,
)

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def metric(offset=0, **fields):
    values = dict(
        timestamp=record_timestamp(BASE_TIME + timedelta(seconds=offset)),
        hostname='test-server',
        ip_address='192.168.1.100',
        ram_usage=85,
        cpu_usage=40,
        disk_usage=70,
        swap_usage=0,
        load_average=30,
        network_rx=7.99,
        network_tx=0.25,
        extra_data={'uptime': '1d 2h 3m', 'os': 'Ubuntu 22.04'},
    )
    values.update(fields)
    return MetricRecord(**values)


@pytest.fixture
def store(tmp_path):
    return SQLiteMetricsStore(tmp_path / 'data' / 'metrics.db')


class TestSQLiteStore:
    def test_metric_round_trip(self, store):
        record = metric()
        record_id = store.append_metric(record)

        [fetched] = store.recent_metrics(1)

        assert fetched == record
        assert fetched.id == record_id
        assert fetched.timestamp.tzinfo is not None

    def test_recent_metrics_newest_first(self, store):
        for offset in (0, 120, 60):
            store.append_metric(metric(offset, ram_usage=offset))

        fetched = store.recent_metrics(2)

        assert [r.ram_usage for r in fetched] == [120, 60]

    def test_metric_without_extra_data(self, store):
        store.append_metric(metric(extra_data=None))
        assert store.recent_metrics(1)[0].extra_data is None

    def test_empty_extra_data_kept_distinct_from_none(self, store):
        store.append_metric(metric(extra_data={}))
        assert store.recent_metrics(1)[0].extra_data == {}

    def test_alert_round_trip(self, store):
        record = AlertRecord(
            timestamp=record_timestamp(BASE_TIME),
            hostname='test-server',
            alert_type='disk',
            value='95%',
            message='💽 High disk usage on /: 95% (threshold: 90%)',
            sent_successfully=False,
        )
        store.append_alert(record)

        [fetched] = store.recent_alerts(10)

        assert fetched == record
        assert fetched.sent_successfully is False

    def test_empty_store(self, store):
        assert store.recent_metrics(5) == []
        assert store.recent_alerts(5) == []

    def test_record_timestamp_drops_microseconds(self):
        moment = datetime(2026, 1, 1, 12, 0, 0, 999999, tzinfo=timezone(timedelta(hours=2)))
        assert record_timestamp(moment) == datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


class TestCreateStore:
    def test_disabled(self, settings):
        assert isinstance(create_store(settings), NullMetricsStore)

    def test_sqlite(self, make_settings, tmp_path):
        settings = make_settings(database={
            'enabled': True, 'type': 'sqlite', 'sqlite': {'path': str(tmp_path / 'm.db')},
        })
        store = create_store(settings)

        assert isinstance(store, SQLiteMetricsStore)
        assert (tmp_path / 'm.db').exists()

    def test_unsupported_type_disables_persistence(self, make_settings):
        settings = make_settings(database={'enabled': True, 'type': 'mongodb'})
        store = create_store(settings)

        assert isinstance(store, NullMetricsStore)
        assert store.enabled is False

    def test_unreachable_backend_disables_persistence(self, make_settings):
        settings = make_settings(database={'enabled': True, 'type': 'postgresql'})
        with patch('metrics_store.psycopg2.pool.ThreadedConnectionPool',
                   side_effect=psycopg2.OperationalError('connection refused')):
            store = create_store(settings)

        assert isinstance(store, NullMetricsStore)

    def test_null_store_is_a_no_op(self):
        store = NullMetricsStore()
        assert store.append_metric(metric()) is None
        assert store.recent_alerts(10) == []


class TestPostgresStore:
    def test_empty_extra_data_stored_as_json_object(self):
        with patch('metrics_store.psycopg2.pool.ThreadedConnectionPool') as pool_cls:
            store = PostgresMetricsStore('db', 5432, 'monitoring', 'monitor', 'secret')
        cursor = pool_cls.return_value.getconn.return_value.cursor.return_value.__enter__.return_value

        store.append_metric(metric(extra_data={}))

        sql, values = cursor.execute.call_args[0]
        assert sql.startswith('INSERT INTO metrics')
        assert isinstance(values[-1], psycopg2.extras.Json)
        assert values[-1].adapted == {}
