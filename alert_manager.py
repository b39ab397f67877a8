#!/usr/bin/env python3
# alert_manager.py
"""
Alert Manager - threshold evaluation, per-kind cooldown and notification dispatch
"""

import time
import threading
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Tuple

from alert_config import RESOURCE_KINDS, KIND_LABELS
from config_store import ResourceConfig
from metrics_store import AlertRecord, NullMetricsStore, record_timestamp

logger = logging.getLogger('resmon.alerts')


@dataclass(frozen=True)
class Breach:
    kind: str
    reading: float
    threshold: float
    formatted_value: str

    @property
    def label(self):
        return KIND_LABELS.get(self.kind, self.kind)


def _format_value(kind, snapshot):
    if kind == 'network':
        return (f"RX: {snapshot.reading('network_rx'):.2f} Mbps, "
                f"TX: {snapshot.reading('network_tx'):.2f} Mbps")
    if kind == 'load':
        per_core = snapshot.reading('load') / 100
        load_avg = per_core * snapshot.host.cpu_count
        return f"{load_avg:.2f} (per core: {per_core:.2f})"
    return f"{snapshot.reading(kind)}%"


def evaluate_thresholds(snapshot, resources: Mapping[str, ResourceConfig]) -> List[Breach]:
    """
    Resources in breach for this snapshot, in RESOURCE_KINDS order.

    A kind breaches when it is enabled and its reading is at or above the
    threshold. Network uses the larger of RX and TX against one threshold.
    Swap never breaches at 0% (hosts without swap).
    """
    breaches = []
    for kind in RESOURCE_KINDS:
        config = resources.get(kind)
        if config is None or not config.enabled:
            continue

        if kind == 'network':
            reading = max(snapshot.reading('network_rx'), snapshot.reading('network_tx'))
        else:
            reading = snapshot.reading(kind)

        if kind == 'swap' and reading <= 0:
            continue
        if reading >= config.threshold:
            breaches.append(Breach(
                kind=kind,
                reading=reading,
                threshold=config.threshold,
                formatted_value=_format_value(kind, snapshot),
            ))
    return breaches


class AlertState:
    """Last successful send time per kind (epoch seconds, 0 = never)"""

    def __init__(self):
        self._lock = threading.Lock()
        self._last_sent: Dict[str, float] = {}

    def last_sent(self, kind) -> float:
        with self._lock:
            return self._last_sent.get(kind, 0)

    def record_sent(self, kind, at: float):
        with self._lock:
            self._last_sent[kind] = at

    def as_dict(self):
        with self._lock:
            return dict(self._last_sent)


class AlertRateLimiter:
    """Cooldown gate; reads AlertState but never writes it"""

    def __init__(self, state: AlertState, cooldown: float):
        self.state = state
        self.cooldown = cooldown

    def should_send(self, kind, now: float) -> bool:
        return now - self.state.last_sent(kind) >= self.cooldown


class AlertDispatcher:
    """
    Formats a breach, delivers it with bounded retry and records the outcome.

    Only a successful delivery updates AlertState, so a kind whose delivery
    failed is offered again on the next tick without waiting for the cooldown.
    """

    def __init__(self, notifier, formatter, state: AlertState, store=None, exporter=None,
                 max_attempts=3, retry_delay=2):
        self.notifier = notifier
        self.formatter = formatter
        self.state = state
        self.store = store or NullMetricsStore()
        self.exporter = exporter
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def _deliver(self, message, kind) -> Tuple[bool, int]:
        """Returns (success, attempts used)"""
        for attempt in range(1, self.max_attempts + 1):
            success, error_type = self.notifier.send_message(message)
            if success:
                return True, attempt

            logger.warning(
                f"[Alerts] {kind} alert attempt {attempt}/{self.max_attempts} failed ({error_type})"
            )
            if attempt < self.max_attempts:
                time.sleep(self.retry_delay)
        return False, self.max_attempts

    def send(self, breach: Breach, snapshot) -> bool:
        message = self.formatter.format_alert(breach, snapshot)
        host = snapshot.host

        if not self.notifier.enabled:
            logger.warning(f"[Alerts] {breach.label} alert not sent: notifications disabled")
            success, attempts = False, 0
            # No retry is coming, so the unsent row is rate limited like a sent one
            self.state.record_sent(breach.kind, snapshot.epoch)
        else:
            success, attempts = self._deliver(message, breach.kind)

        if success:
            self.state.record_sent(breach.kind, snapshot.epoch)
            logger.info(f"[Alerts] ✓ {breach.label} alert sent: {breach.formatted_value} (attempt {attempts})")
            if self.exporter is not None:
                try:
                    self.exporter.inc_counter(breach.kind)
                except Exception as e:
                    logger.error(f"[Alerts] Failed to increment {breach.kind} alert counter: {e}")
        elif attempts:
            logger.error(
                f"[Alerts] ✗ {breach.label} alert failed after {attempts} attempts "
                f"(host={host.hostname}, ip={host.ip}, chat_id={self.notifier.chat_id}, "
                f"token={self.notifier.token_hint()})"
            )

        try:
            self.store.append_alert(AlertRecord(
                timestamp=record_timestamp(snapshot.timestamp),
                hostname=host.hostname,
                alert_type=breach.kind,
                value=breach.formatted_value,
                message=message,
                sent_successfully=success,
            ))
        except Exception as e:
            logger.error(f"[Alerts] Failed to store {breach.kind} alert: {e}")

        return success


class AlertManager:
    """Runs one snapshot through evaluation, the rate limiter and the dispatcher"""

    def __init__(self, resources: Mapping[str, ResourceConfig], limiter: AlertRateLimiter,
                 dispatcher: AlertDispatcher):
        self.resources = resources
        self.limiter = limiter
        self.dispatcher = dispatcher

    def process_snapshot(self, snapshot) -> List[Tuple[Breach, bool]]:
        """Returns (breach, sent) for every breach offered to the dispatcher"""
        now = snapshot.epoch
        results = []

        for breach in evaluate_thresholds(snapshot, self.resources):
            if not self.limiter.should_send(breach.kind, now):
                logger.debug(f"[Alerts] {breach.label} in breach but still in cooldown")
                continue
            try:
                sent = self.dispatcher.send(breach, snapshot)
            except Exception as e:
                logger.error(f"[Alerts] Error dispatching {breach.kind} alert: {e}")
                sent = False
            results.append((breach, sent))

        return results
