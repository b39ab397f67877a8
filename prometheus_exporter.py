#!/usr/bin/env python3
# prometheus_exporter.py
"""
Prometheus exposition of the latest readings and alert counts.
The registry is scraped through the control server's /metrics route.
"""

import logging

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, CONTENT_TYPE_LATEST,
    GCCollector, PlatformCollector, ProcessCollector, generate_latest,
)

from alert_config import RESOURCE_KINDS

logger = logging.getLogger('resmon.prometheus')


class PrometheusExporter:
    enabled = True
    content_type = CONTENT_TYPE_LATEST

    def __init__(self, disk_path='/', network_interface=None, registry=None):
        self.registry = registry or CollectorRegistry()
        self.disk_path = disk_path
        self.interface = network_interface or 'all'

        # Process/platform/gc metrics, as the default registry would expose
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)

        self.ram_gauge = Gauge('system_ram_usage_percent', 'RAM usage percentage',
                               registry=self.registry)
        self.cpu_gauge = Gauge('system_cpu_usage_percent', 'CPU usage percentage',
                               registry=self.registry)
        self.disk_gauge = Gauge('system_disk_usage_percent', 'Disk usage percentage',
                                ['path'], registry=self.registry)
        self.swap_gauge = Gauge('system_swap_usage_percent', 'Swap usage percentage',
                                registry=self.registry)
        self.load_gauge = Gauge('system_load_average_per_core', 'Load average per CPU core',
                                registry=self.registry)
        self.network_rx_gauge = Gauge('system_network_rx_mbps', 'Network receive rate in Mbps',
                                      ['interface'], registry=self.registry)
        self.network_tx_gauge = Gauge('system_network_tx_mbps', 'Network transmit rate in Mbps',
                                      ['interface'], registry=self.registry)

        # Exposed as system_<kind>_alerts_total
        self.alert_counters = {
            kind: Counter(f'system_{kind}_alerts', f'Number of {kind} alerts sent',
                          registry=self.registry)
            for kind in RESOURCE_KINDS
        }

        logger.info("[Prometheus] Metrics registry initialized")

    def _gauge(self, key):
        if key == 'ram':
            return self.ram_gauge
        if key == 'cpu':
            return self.cpu_gauge
        if key == 'disk':
            return self.disk_gauge.labels(path=self.disk_path)
        if key == 'swap':
            return self.swap_gauge
        if key == 'load':
            return self.load_gauge
        if key == 'network_rx':
            return self.network_rx_gauge.labels(interface=self.interface)
        if key == 'network_tx':
            return self.network_tx_gauge.labels(interface=self.interface)
        raise KeyError(f"unknown gauge: {key}")

    def set_gauge(self, key, value):
        """Last write wins; `key` is a reading key (ram, cpu, ..., network_rx)"""
        self._gauge(key).set(value)

    def inc_counter(self, kind):
        self.alert_counters[kind].inc()

    def render(self):
        return generate_latest(self.registry)


class NullMetricsExporter:
    """Used when Prometheus export is disabled"""

    enabled = False
    content_type = 'text/plain; charset=utf-8'

    def set_gauge(self, key, value):
        pass

    def inc_counter(self, kind):
        pass

    def render(self):
        return b''


def create_exporter(settings):
    if not settings.prometheus_enabled:
        logger.info("[Prometheus] Disabled (prometheus.enabled is false)")
        return NullMetricsExporter()
    return PrometheusExporter(
        disk_path=settings.disk_path,
        network_interface=settings.network_interface,
    )
