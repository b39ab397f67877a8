#!/usr/bin/env python3
"""
Metrics Store
Append-only persistence for metric samples and alerts.
SQLite, PostgreSQL and MySQL backends share one interface; the backend is
chosen once at startup by create_store().
"""

import json
import sqlite3
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool
import pymysql

from config_store import SUPPORTED_DATABASES

logger = logging.getLogger('resmon.store')


@dataclass
class MetricRecord:
    timestamp: datetime
    hostname: str
    ip_address: str
    ram_usage: float
    cpu_usage: float
    disk_usage: float
    swap_usage: float
    load_average: float
    network_rx: float
    network_tx: float
    extra_data: Optional[dict] = None
    id: Optional[int] = field(default=None, compare=False)

    def as_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'hostname': self.hostname,
            'ip_address': self.ip_address,
            'ram_usage': self.ram_usage,
            'cpu_usage': self.cpu_usage,
            'disk_usage': self.disk_usage,
            'swap_usage': self.swap_usage,
            'load_average': self.load_average,
            'network_rx': self.network_rx,
            'network_tx': self.network_tx,
            'extra_data': self.extra_data,
        }


@dataclass
class AlertRecord:
    timestamp: datetime
    hostname: str
    alert_type: str
    value: str
    message: str
    sent_successfully: bool
    id: Optional[int] = field(default=None, compare=False)

    def as_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'hostname': self.hostname,
            'alert_type': self.alert_type,
            'value': self.value,
            'message': self.message,
            'sent_successfully': self.sent_successfully,
        }


def record_timestamp(moment=None):
    """UTC, second precision - the resolution every backend stores"""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0)


METRIC_COLUMNS = (
    'timestamp', 'hostname', 'ip_address', 'ram_usage', 'cpu_usage', 'disk_usage',
    'swap_usage', 'load_average', 'network_rx', 'network_tx', 'extra_data',
)
ALERT_COLUMNS = (
    'timestamp', 'hostname', 'alert_type', 'value', 'message', 'sent_successfully',
)


class MetricsStore:
    """Interface shared by all backends"""

    backend = 'none'
    enabled = True

    def append_metric(self, record: MetricRecord) -> Optional[int]:
        raise NotImplementedError

    def append_alert(self, record: AlertRecord) -> Optional[int]:
        raise NotImplementedError

    def recent_metrics(self, limit: int = 100) -> List[MetricRecord]:
        raise NotImplementedError

    def recent_alerts(self, limit: int = 100) -> List[AlertRecord]:
        raise NotImplementedError

    def close(self):
        pass


class NullMetricsStore(MetricsStore):
    """Used when persistence is disabled or failed to initialize"""

    enabled = False

    def append_metric(self, record):
        return None

    def append_alert(self, record):
        return None

    def recent_metrics(self, limit=100):
        return []

    def recent_alerts(self, limit=100):
        return []


class _SQLMetricsStore(MetricsStore):
    """Row encoding and queries common to the SQL backends"""

    placeholder = '%s'

    def _insert(self, table, columns, values) -> Optional[int]:
        raise NotImplementedError

    def _select(self, sql, params) -> list:
        raise NotImplementedError

    # -------- encoding --------
    def _encode_timestamp(self, moment):
        return moment

    def _decode_timestamp(self, value):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def _encode_extra(self, extra):
        return json.dumps(extra) if extra is not None else None

    def _decode_extra(self, value):
        if value is None or isinstance(value, dict):
            return value
        return json.loads(value)

    # -------- interface --------
    def append_metric(self, record):
        values = (
            self._encode_timestamp(record.timestamp), record.hostname, record.ip_address,
            record.ram_usage, record.cpu_usage, record.disk_usage, record.swap_usage,
            record.load_average, record.network_rx, record.network_tx,
            self._encode_extra(record.extra_data),
        )
        record_id = self._insert('metrics', METRIC_COLUMNS, values)
        logger.debug(f"[Store] Stored metrics row (id={record_id})")
        return record_id

    def append_alert(self, record):
        values = (
            self._encode_timestamp(record.timestamp), record.hostname, record.alert_type,
            record.value, record.message, bool(record.sent_successfully),
        )
        record_id = self._insert('alerts', ALERT_COLUMNS, values)
        logger.debug(f"[Store] Stored alert row (id={record_id}, type={record.alert_type})")
        return record_id

    def recent_metrics(self, limit=100):
        rows = self._select(
            f"SELECT id, {', '.join(METRIC_COLUMNS)} FROM metrics "
            f"ORDER BY timestamp DESC, id DESC LIMIT {self.placeholder}",
            (int(limit),),
        )
        return [
            MetricRecord(
                id=row[0],
                timestamp=self._decode_timestamp(row[1]),
                hostname=row[2],
                ip_address=row[3],
                ram_usage=row[4],
                cpu_usage=row[5],
                disk_usage=row[6],
                swap_usage=row[7],
                load_average=row[8],
                network_rx=row[9],
                network_tx=row[10],
                extra_data=self._decode_extra(row[11]),
            )
            for row in rows
        ]

    def recent_alerts(self, limit=100):
        rows = self._select(
            f"SELECT id, {', '.join(ALERT_COLUMNS)} FROM alerts "
            f"ORDER BY timestamp DESC, id DESC LIMIT {self.placeholder}",
            (int(limit),),
        )
        return [
            AlertRecord(
                id=row[0],
                timestamp=self._decode_timestamp(row[1]),
                hostname=row[2],
                alert_type=row[3],
                value=row[4],
                message=row[5],
                sent_successfully=bool(row[6]),
            )
            for row in rows
        ]

    def _insert_sql(self, table, columns):
        marks = ', '.join([self.placeholder] * len(columns))
        return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({marks})"


class SQLiteMetricsStore(_SQLMetricsStore):
    """Embedded store; opens a short-lived connection per operation"""

    backend = 'sqlite'
    placeholder = '?'

    def __init__(self, db_path='/var/lib/resource-monitor/metrics.db'):
        self.db_path = str(db_path)
        self._init_db()
        logger.info(f"[Store] SQLite database initialized at {self.db_path}")

    def _init_db(self):
        """Create database file and schema"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    hostname TEXT NOT NULL,
                    ip_address TEXT NOT NULL,
                    ram_usage REAL NOT NULL,
                    cpu_usage REAL NOT NULL,
                    disk_usage REAL NOT NULL,
                    swap_usage REAL NOT NULL,
                    load_average REAL NOT NULL,
                    network_rx REAL NOT NULL,
                    network_tx REAL NOT NULL,
                    extra_data TEXT
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    hostname TEXT NOT NULL,
                    alert_type TEXT NOT NULL,
                    value TEXT NOT NULL,
                    message TEXT NOT NULL,
                    sent_successfully INTEGER NOT NULL
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_alerts_timestamp ON alerts(timestamp)')
            conn.commit()
        finally:
            conn.close()

    def _encode_timestamp(self, moment):
        return moment.astimezone(timezone.utc).isoformat()

    def _decode_timestamp(self, value):
        return super()._decode_timestamp(datetime.fromisoformat(value))

    def _insert(self, table, columns, values):
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(self._insert_sql(table, columns), values)
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _select(self, sql, params):
        conn = sqlite3.connect(self.db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()


class PostgresMetricsStore(_SQLMetricsStore):
    """Networked store backed by a psycopg2 threaded connection pool"""

    backend = 'postgresql'

    def __init__(self, host, port, database, user, password, min_connections=1, max_connections=10):
        self.pool = psycopg2.pool.ThreadedConnectionPool(
            min_connections,
            max_connections,
            host=host,
            port=port,
            dbname=database,
            user=user,
            password=password,
            connect_timeout=5,
        )
        self._init_db()
        logger.info(f"[Store] PostgreSQL database initialized at {host}:{port}/{database}")

    @contextmanager
    def _connection(self):
        conn = self.pool.getconn()
        try:
            with conn:  # commit on success, rollback on error
                yield conn
        finally:
            self.pool.putconn(conn)

    def _init_db(self):
        with self._connection() as conn, conn.cursor() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS metrics (
                    id SERIAL PRIMARY KEY,
                    timestamp TIMESTAMPTZ NOT NULL,
                    hostname VARCHAR(255) NOT NULL,
                    ip_address VARCHAR(45) NOT NULL,
                    ram_usage DOUBLE PRECISION NOT NULL,
                    cpu_usage DOUBLE PRECISION NOT NULL,
                    disk_usage DOUBLE PRECISION NOT NULL,
                    swap_usage DOUBLE PRECISION NOT NULL,
                    load_average DOUBLE PRECISION NOT NULL,
                    network_rx DOUBLE PRECISION NOT NULL,
                    network_tx DOUBLE PRECISION NOT NULL,
                    extra_data JSONB
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS alerts (
                    id SERIAL PRIMARY KEY,
                    timestamp TIMESTAMPTZ NOT NULL,
                    hostname VARCHAR(255) NOT NULL,
                    alert_type VARCHAR(50) NOT NULL,
                    value VARCHAR(100) NOT NULL,
                    message TEXT NOT NULL,
                    sent_successfully BOOLEAN NOT NULL
                )
            ''')

    def _encode_extra(self, extra):
        return psycopg2.extras.Json(extra) if extra is not None else None

    def _insert(self, table, columns, values):
        with self._connection() as conn, conn.cursor() as cursor:
            cursor.execute(f"{self._insert_sql(table, columns)} RETURNING id", values)
            return cursor.fetchone()[0]

    def _select(self, sql, params):
        with self._connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.fetchall()

    def close(self):
        try:
            self.pool.closeall()
            logger.info("[Store] PostgreSQL pool closed")
        except psycopg2.Error as e:
            logger.error(f"[Store] Error closing PostgreSQL pool: {e}")


class MySQLMetricsStore(_SQLMetricsStore):
    """Networked store over a single PyMySQL connection guarded by a lock"""

    backend = 'mysql'

    def __init__(self, host, port, database, user, password):
        self._lock = threading.Lock()
        self.conn = pymysql.connect(
            host=host,
            port=int(port),
            database=database,
            user=user,
            password=password or '',
            autocommit=True,
            connect_timeout=5,
            charset='utf8mb4',
        )
        self._init_db()
        logger.info(f"[Store] MySQL database initialized at {host}:{port}/{database}")

    def _init_db(self):
        with self._lock, self.conn.cursor() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS metrics (
                    id INT AUTO_INCREMENT PRIMARY KEY,
                    timestamp DATETIME NOT NULL,
                    hostname VARCHAR(255) NOT NULL,
                    ip_address VARCHAR(45) NOT NULL,
                    ram_usage DOUBLE NOT NULL,
                    cpu_usage DOUBLE NOT NULL,
                    disk_usage DOUBLE NOT NULL,
                    swap_usage DOUBLE NOT NULL,
                    load_average DOUBLE NOT NULL,
                    network_rx DOUBLE NOT NULL,
                    network_tx DOUBLE NOT NULL,
                    extra_data JSON
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS alerts (
                    id INT AUTO_INCREMENT PRIMARY KEY,
                    timestamp DATETIME NOT NULL,
                    hostname VARCHAR(255) NOT NULL,
                    alert_type VARCHAR(50) NOT NULL,
                    value VARCHAR(100) NOT NULL,
                    message TEXT NOT NULL,
                    sent_successfully BOOLEAN NOT NULL
                )
            ''')

    def _encode_timestamp(self, moment):
        # DATETIME has no zone: store naive UTC
        return moment.astimezone(timezone.utc).replace(tzinfo=None)

    def _insert(self, table, columns, values):
        with self._lock:
            self.conn.ping(reconnect=True)
            with self.conn.cursor() as cursor:
                cursor.execute(self._insert_sql(table, columns), values)
                return cursor.lastrowid

    def _select(self, sql, params):
        with self._lock:
            self.conn.ping(reconnect=True)
            with self.conn.cursor() as cursor:
                cursor.execute(sql, params)
                return cursor.fetchall()

    def close(self):
        with self._lock:
            try:
                self.conn.close()
                logger.info("[Store] MySQL connection closed")
            except pymysql.Error as e:
                logger.error(f"[Store] Error closing MySQL connection: {e}")


def create_store(settings) -> MetricsStore:
    """
    Build the configured backend.

    Persistence degrades to NullMetricsStore when disabled, when the backend
    type is unsupported, or when the backend cannot be initialized.
    """
    database = settings.database
    if not database.get('enabled'):
        logger.info("[Store] Disabled (database.enabled is false)")
        return NullMetricsStore()

    db_type = database.get('type')
    if db_type not in SUPPORTED_DATABASES:
        logger.error(f"[Store] Unsupported database type: {db_type!r}, persistence disabled")
        return NullMetricsStore()

    options = dict(database.get(db_type) or {})
    try:
        if db_type == 'sqlite':
            return SQLiteMetricsStore(options.get('path') or '/var/lib/resource-monitor/metrics.db')
        if db_type == 'postgresql':
            return PostgresMetricsStore(
                host=options.get('host'),
                port=options.get('port', 5432),
                database=options.get('database'),
                user=options.get('user'),
                password=options.get('password'),
            )
        return MySQLMetricsStore(
            host=options.get('host'),
            port=options.get('port', 3306),
            database=options.get('database'),
            user=options.get('user'),
            password=options.get('password'),
        )
    except Exception as e:
        logger.error(f"[Store] Failed to initialize {db_type} store, persistence disabled: {e}")
        return NullMetricsStore()
