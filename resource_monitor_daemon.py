#!/usr/bin/env python3
# resource_monitor_daemon.py
import argparse
import logging
import os
import signal
import sys
import threading
import time
from datetime import datetime, timezone
from http import HTTPStatus
from logging.handlers import RotatingFileHandler

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from alert_formatter import AlertFormatter
from alert_manager import AlertDispatcher, AlertManager, AlertRateLimiter, AlertState
from config_store import ConfigError, load_settings
from metrics_store import create_store
from process_monitor import ProcessMonitor
from prometheus_exporter import create_exporter
from resource_readers import ResourceReaders
from sink_fanout import SinkFanout
from snapshot import SnapshotAssembler
from system_info import describe_host
from telegram_notifier import create_notifier

# Daemon version and startup tracking
DAEMON_VERSION = "1.0.0"
DAEMON_START_TIME = time.time()

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
MAX_RECENT_LIMIT = 1000

logger = logging.getLogger('resmon')


def setup_logging(log_settings=None):
    """
    Console logging always; a rotating log file when log_settings names one.
    Falls back to console only if the log file cannot be created.
    """
    log_settings = log_settings or {}
    level = getattr(logging, str(log_settings.get('level', 'INFO')).upper(), logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
    logger.addHandler(console)

    log_file = log_settings.get('path')
    if not log_file:
        return logger
    try:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=log_settings.get('max_bytes', 10 * 1024 * 1024),
            backupCount=log_settings.get('backup_count', 5),
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(handler)
    except OSError as e:
        logger.error(f"Could not create log file {log_file}: {e}")
    return logger


def next_deadline(deadline, now, interval):
    """
    Advance a fixed-rate deadline past `now`.

    Returns (deadline, missed): slots already behind `now` are dropped rather
    than fired back to back.
    """
    deadline += interval
    missed = 0
    if now > deadline:
        missed = int((now - deadline) // interval) + 1
        deadline += missed * interval
    return deadline, missed


class MonitorDaemon:
    """
    Owns the tick loop and every collaborator it drives.

    Lifecycle: idle -> running -> stopped. A tick reads a snapshot, pushes it
    to the sinks, then runs alerting. Scheduled ticks never overlap: a tick
    due while another is still running is skipped.
    """

    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'

    def __init__(self, settings, readers=None, notifier=None, store=None, exporter=None,
                 formatter=None, status_writer=None, process_monitor=None, describe=describe_host):
        self.settings = settings
        self.describe = describe

        self.readers = readers or ResourceReaders(settings.disk_path, settings.network_interface)
        self.notifier = notifier or create_notifier(settings)
        self.store = store or create_store(settings)
        self.exporter = exporter or create_exporter(settings)
        self.process_monitor = process_monitor or ProcessMonitor(settings.disk_path)
        self.formatter = formatter or AlertFormatter(settings, self.process_monitor)

        self.assembler = SnapshotAssembler(self.readers, settings, describe)
        self.alert_state = AlertState()
        self.limiter = AlertRateLimiter(self.alert_state, settings.alert_cooldown)
        self.dispatcher = AlertDispatcher(
            self.notifier, self.formatter, self.alert_state, self.store, self.exporter
        )
        self.alert_manager = AlertManager(settings.resources, self.limiter, self.dispatcher)
        self.sinks = SinkFanout(settings, self.store, self.exporter, status_writer)

        self.state = self.IDLE
        self._stop_flag = threading.Event()
        self._tick_lock = threading.Lock()
        self._scheduler_thread = None

        self.last_snapshot = None
        self.tick_count = 0
        self.failed_ticks = 0
        self.skipped_ticks = 0

        enabled = [kind for kind in settings.resources if settings.is_enabled(kind)]
        logger.info(f"[Daemon] Initialized (interval={settings.check_interval}s, "
                    f"cooldown={settings.alert_cooldown}s, resources={', '.join(enabled)})")

    # -------- lifecycle --------
    def start(self):
        if self.state != self.IDLE:
            logger.warning(f"[Daemon] Cannot start from state {self.state}")
            return False

        self.state = self.RUNNING
        self._scheduler_thread = threading.Thread(
            target=self._schedule_loop,
            daemon=True,
            name='Scheduler'
        )
        self._scheduler_thread.start()
        logger.info(f"Monitoring started. Interval: {self.settings.check_interval} seconds")
        return True

    def stop(self, timeout=None):
        """
        Stop at the next tick boundary; an in-flight tick is allowed to finish.

        With a timeout, returns False if the scheduler is still running when it
        expires. Collaborators are then left open for the running tick.
        """
        self._stop_flag.set()
        if self._scheduler_thread:
            self._scheduler_thread.join(timeout=timeout)
            if self._scheduler_thread.is_alive():
                logger.warning("[Daemon] Scheduler still running a tick, collaborators left open")
                return False

        # Waits for a manual tick still holding the lock
        with self._tick_lock:
            self.state = self.STOPPED
            self.store.close()
            self.notifier.close()
        logger.info("[Daemon] Stopped")
        return True

    def _schedule_loop(self):
        # One self-test before the first tick; failure is only logged
        if not self.test_notification_channel():
            logger.warning("[Scheduler] Notification self-test failed, continuing anyway")

        interval = self.settings.check_interval
        deadline = time.monotonic()
        while not self._stop_flag.is_set():
            self._scheduled_tick()

            now = time.monotonic()
            deadline, missed = next_deadline(deadline, now, interval)
            if missed:
                self.skipped_ticks += missed
                logger.warning(f"[Scheduler] Tick overran the interval, skipped {missed} tick(s)")
            self._stop_flag.wait(timeout=deadline - now)

        logger.info("[Scheduler] Loop exited")

    def _scheduled_tick(self):
        if not self._tick_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.warning("[Scheduler] Previous tick still running, skipping")
            return None
        try:
            return self._run_tick()
        finally:
            self._tick_lock.release()

    def _run_tick(self):
        try:
            snapshot = self.assembler.assemble()
            self.last_snapshot = snapshot
            sinks = self.sinks.publish(snapshot)
            alerts = self.alert_manager.process_snapshot(snapshot)
            self.tick_count += 1
            return {
                'snapshot': snapshot.as_dict(),
                'sinks': sinks,
                'alerts': [
                    {'kind': breach.kind, 'value': breach.formatted_value, 'sent': sent}
                    for breach, sent in alerts
                ],
            }
        except Exception as e:
            self.failed_ticks += 1
            logger.error(f"[Scheduler] Error in monitoring process: {e}", exc_info=True)
            return None

    # -------- operations --------
    def run_tick_once(self):
        """Run one full tick now, waiting for any in-flight tick to finish first"""
        with self._tick_lock:
            return self._run_tick()

    def get_snapshot(self):
        """A fresh snapshot; does not alert or touch the sinks"""
        return self.assembler.assemble()

    def test_notification_channel(self):
        try:
            host = self.describe(self.settings.disk_path)
            message = self.formatter.format_test_message(host)
            success, error_type = self.notifier.send_message(message)
        except Exception as e:
            logger.error(f"[Daemon] Notification self-test error: {e}")
            return False

        if success:
            logger.info("[Daemon] Test message sent successfully")
        else:
            logger.error(f"[Daemon] Failed to send test message ({error_type}, "
                         f"token={self.notifier.token_hint()})")
        return success

    def get_recent_metrics(self, limit=100):
        return self.store.recent_metrics(limit)

    def get_recent_alerts(self, limit=100):
        return self.store.recent_alerts(limit)

    def get_status(self):
        """Get current status of the scheduler and its collaborators"""
        last = self.last_snapshot
        return {
            "state": self.state,
            "version": DAEMON_VERSION,
            "check_interval": self.settings.check_interval,
            "alert_cooldown": self.settings.alert_cooldown,
            "ticks": {
                "completed": self.tick_count,
                "failed": self.failed_ticks,
                "skipped": self.skipped_ticks,
                "last": last.timestamp.isoformat() if last else None,
            },
            "resources": {
                kind: {"enabled": config.enabled, "threshold": config.threshold}
                for kind, config in self.settings.resources.items()
            },
            "notifications": {
                "enabled": self.notifier.enabled,
                "last_sent": self.alert_state.as_dict(),
            },
            "database": {
                "enabled": self.store.enabled,
                "backend": self.store.backend,
            },
            "prometheus": {"enabled": self.exporter.enabled},
            "status_file": self.settings.status_file,
        }


def _limit_arg():
    limit = request.args.get('limit', 100, type=int)
    return max(1, min(limit, MAX_RECENT_LIMIT))


# -------- Flask HTTP control app --------
def make_app(daemon: MonitorDaemon):
    app = Flask(__name__)
    CORS(app, origins="*")  # Allow all origins

    @app.route("/", methods=["GET"])
    def index():
        return "Resource Monitor API is running"

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint with component status"""
        scheduler_alive = bool(daemon._scheduler_thread and daemon._scheduler_thread.is_alive())
        components = {
            'scheduler': 'running' if scheduler_alive else 'stopped',
            'notifications': 'enabled' if daemon.notifier.enabled else 'disabled',
            'database': daemon.store.backend if daemon.store.enabled else 'disabled',
            'prometheus': 'enabled' if daemon.exporter.enabled else 'disabled',
            'control_api': 'running',  # If we're responding, API is running
        }

        response = {
            'status': 'healthy' if scheduler_alive else 'degraded',
            'service': 'resource-monitor',
            'version': DAEMON_VERSION,
            'uptime_seconds': int(time.time() - DAEMON_START_TIME),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'components': components,
        }
        status_code = HTTPStatus.OK if scheduler_alive else HTTPStatus.SERVICE_UNAVAILABLE
        return jsonify(response), status_code

    @app.route("/status", methods=["GET"])
    def status():
        try:
            snapshot = daemon.get_snapshot()
        except Exception as e:
            logger.error(f"[API] Error reading snapshot: {e}")
            return jsonify({"status": "error", "message": str(e)}), HTTPStatus.INTERNAL_SERVER_ERROR
        return jsonify({
            "status": "ok",
            "timestamp": snapshot.timestamp.isoformat(),
            "system": snapshot.host.as_dict(),
            "metrics": dict(snapshot.readings),
        }), HTTPStatus.OK

    @app.route("/api/status", methods=["GET"])
    def daemon_status():
        return jsonify(daemon.get_status()), HTTPStatus.OK

    @app.route("/test-telegram", methods=["GET"])
    def test_telegram():
        if daemon.test_notification_channel():
            return jsonify({
                "status": "ok",
                "message": "Telegram test message sent successfully"
            }), HTTPStatus.OK
        return jsonify({
            "status": "error",
            "message": "Failed to send Telegram test message"
        }), HTTPStatus.INTERNAL_SERVER_ERROR

    @app.route("/api/tick", methods=["POST"])
    def run_tick():
        logger.info("[API] Manual tick requested")
        result = daemon.run_tick_once()
        if result is None:
            return jsonify({"status": "error", "message": "Tick failed, see daemon log"}), \
                HTTPStatus.INTERNAL_SERVER_ERROR
        return jsonify({"status": "ok", **result}), HTTPStatus.OK

    @app.route("/api/metrics/recent", methods=["GET"])
    def recent_metrics():
        try:
            records = daemon.get_recent_metrics(_limit_arg())
        except Exception as e:
            logger.error(f"[API] Error reading metrics: {e}")
            return jsonify({"status": "error", "message": str(e)}), HTTPStatus.INTERNAL_SERVER_ERROR
        return jsonify({"status": "ok", "metrics": [r.as_dict() for r in records]}), HTTPStatus.OK

    @app.route("/api/alerts/recent", methods=["GET"])
    def recent_alerts():
        try:
            records = daemon.get_recent_alerts(_limit_arg())
        except Exception as e:
            logger.error(f"[API] Error reading alerts: {e}")
            return jsonify({"status": "error", "message": str(e)}), HTTPStatus.INTERNAL_SERVER_ERROR
        return jsonify({"status": "ok", "alerts": [r.as_dict() for r in records]}), HTTPStatus.OK

    @app.route("/metrics", methods=["GET"])
    def metrics():
        if not daemon.exporter.enabled:
            return jsonify({"status": "error", "message": "Prometheus export disabled"}), HTTPStatus.NOT_FOUND
        return Response(daemon.exporter.render(), content_type=daemon.exporter.content_type)

    return app


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Resource Monitor Daemon (sampling + alerting + control endpoint)")
    parser.add_argument("--config", "-c", help="Path to config.json (secrets.json is read from the same directory)")
    parser.add_argument("--control-port", "-p", type=int, help="Port for control HTTP server")
    parser.add_argument("--check-interval", "-i", type=int, help="Seconds between ticks")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    return parser.parse_args(argv)


def _log_fatal(title):
    import traceback
    logger.critical("=" * 60)
    logger.critical(f"❌ FATAL: {title}")
    logger.critical("=" * 60)
    for line in traceback.format_exc().split('\n'):
        if line:
            logger.critical(line)
    logger.critical("=" * 60)


def _handle_stop_signal(signum, frame):
    logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
    sys.exit(0)


def main(argv=None):
    args = parse_args(argv)
    setup_logging()

    overrides = {}
    if args.check_interval is not None:
        overrides['monitoring'] = {'check_interval': args.check_interval}
    if args.control_port is not None:
        overrides['ports'] = {'control': args.control_port}

    try:
        settings = load_settings(config_file=args.config, overrides=overrides)
        setup_logging(settings.log_settings)
        logger.info("=" * 60)
        logger.info(f"Resource Monitor Starting - Version {DAEMON_VERSION}")
        logger.info("=" * 60)
        daemon = MonitorDaemon(settings)
    except ConfigError as e:
        logger.critical(f"❌ FATAL: Invalid configuration: {e}")
        return 1
    except Exception:
        _log_fatal("Daemon failed to initialize")
        return 1

    if args.once:
        result = daemon.run_tick_once()
        daemon.stop()
        return 0 if result is not None else 1

    signal.signal(signal.SIGTERM, _handle_stop_signal)
    signal.signal(signal.SIGINT, _handle_stop_signal)

    daemon.start()
    app = make_app(daemon)
    logger.info(f"Control HTTP endpoint: http://0.0.0.0:{settings.control_port}")
    logger.info(f"Status file: {settings.status_file}")
    logger.info("✅ Daemon initialization complete")

    try:
        # do not use debug in production
        app.run(host="0.0.0.0", port=settings.control_port)
    except Exception:
        _log_fatal("Daemon crashed during runtime")
        return 1
    finally:
        logger.info("Shutting down daemon...")
        daemon.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
