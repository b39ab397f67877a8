#!/usr/bin/env python3
# sink_fanout.py
"""
Per-tick sinks: metric persistence, Prometheus gauges and the status file.
Each sink is isolated; one failing never prevents the others from running.
"""

import os
import logging
import tempfile

from alert_formatter import format_date
from metrics_store import MetricRecord, NullMetricsStore, record_timestamp
from prometheus_exporter import NullMetricsExporter

logger = logging.getLogger('resmon.sinks')


class StatusFileWriter:
    """Overwrites a small plain-text summary at a fixed path"""

    def __init__(self, path):
        self.path = path

    def write_status(self, text):
        directory = os.path.dirname(self.path) or '.'
        fd, tmp_path = tempfile.mkstemp(prefix='.resource-monitor-', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
            # Readers never observe a half-written file
            os.replace(tmp_path, self.path)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


def format_status(snapshot, settings):
    """One line per enabled resource, RAM always first"""
    lines = [f"Last check: {format_date(snapshot.timestamp)}"]
    lines.append(f"RAM: {snapshot.reading('ram')}%")

    if settings.is_enabled('cpu'):
        lines.append(f"CPU: {snapshot.reading('cpu')}%")
    if settings.is_enabled('disk'):
        lines.append(f"Disk ({settings.disk_path}): {snapshot.reading('disk')}%")
    if settings.is_enabled('swap') and snapshot.reading('swap') > 0:
        lines.append(f"Swap: {snapshot.reading('swap')}%")
    if settings.is_enabled('load'):
        per_core = snapshot.reading('load') / 100
        load_avg = per_core * snapshot.host.cpu_count
        lines.append(f"Load: {load_avg:.2f} (per core: {per_core:.2f})")
    if settings.is_enabled('network'):
        lines.append(
            f"Network ({settings.network_interface or 'default'}): "
            f"RX: {snapshot.reading('network_rx'):.2f} Mbps, "
            f"TX: {snapshot.reading('network_tx'):.2f} Mbps"
        )

    return '\n'.join(lines) + '\n'


def metric_record(snapshot):
    host = snapshot.host
    return MetricRecord(
        timestamp=record_timestamp(snapshot.timestamp),
        hostname=host.hostname,
        ip_address=host.ip,
        ram_usage=snapshot.reading('ram'),
        cpu_usage=snapshot.reading('cpu'),
        disk_usage=snapshot.reading('disk'),
        swap_usage=snapshot.reading('swap'),
        load_average=snapshot.reading('load'),
        network_rx=snapshot.reading('network_rx'),
        network_tx=snapshot.reading('network_tx'),
        extra_data={'uptime': host.uptime, 'os': host.os},
    )


class SinkFanout:
    """
    Pushes each snapshot to the metrics store, the Prometheus gauges and
    the status file.

    Gauges are only updated for enabled kinds; a disabled kind's gauge keeps
    whatever value it last had (never set, in practice).
    """

    def __init__(self, settings, store=None, exporter=None, status_writer=None):
        self.settings = settings
        self.store = store or NullMetricsStore()
        self.exporter = exporter or NullMetricsExporter()
        self.status_writer = status_writer or StatusFileWriter(settings.status_file)

    def publish(self, snapshot):
        """Returns {sink name: succeeded} for the sinks that ran"""
        results = {}

        if self.store.enabled:
            try:
                self.store.append_metric(metric_record(snapshot))
                results['store'] = True
            except Exception as e:
                logger.error(f"[Sinks] Failed to store metrics: {e}")
                results['store'] = False

        if self.exporter.enabled:
            try:
                self._update_gauges(snapshot)
                results['prometheus'] = True
            except Exception as e:
                logger.error(f"[Sinks] Failed to update Prometheus metrics: {e}")
                results['prometheus'] = False

        try:
            self.status_writer.write_status(format_status(snapshot, self.settings))
            results['status_file'] = True
        except Exception as e:
            logger.error(f"[Sinks] Error updating status file: {e}")
            results['status_file'] = False

        return results

    def _update_gauges(self, snapshot):
        self.exporter.set_gauge('ram', snapshot.reading('ram'))
        for kind in ('cpu', 'disk', 'swap'):
            if self.settings.is_enabled(kind):
                self.exporter.set_gauge(kind, snapshot.reading(kind))
        if self.settings.is_enabled('load'):
            self.exporter.set_gauge('load', snapshot.reading('load') / 100)
        if self.settings.is_enabled('network'):
            self.exporter.set_gauge('network_rx', snapshot.reading('network_rx'))
            self.exporter.set_gauge('network_tx', snapshot.reading('network_tx'))
