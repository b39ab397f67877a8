#!/usr/bin/env python3
# alert_config.py
"""
Resource kinds, display labels and alert message templates
Evaluation order of RESOURCE_KINDS is also the alert order within a tick
"""

# RAM first: it is always monitored and always alerts first
RESOURCE_KINDS = ('ram', 'cpu', 'disk', 'swap', 'load', 'network')

# Keys present in every snapshot's readings
READING_KEYS = ('ram', 'cpu', 'disk', 'swap', 'load', 'network_rx', 'network_tx')

KIND_LABELS = {
    'ram': 'RAM',
    'cpu': 'CPU',
    'disk': 'Disk',
    'swap': 'Swap',
    'load': 'Load',
    'network': 'Network',
}

DEFAULT_THRESHOLDS = {
    'ram': 80,        # percent
    'cpu': 90,        # percent
    'disk': 90,       # percent
    'swap': 80,       # percent
    'load': 100,      # percent of one load unit per core
    'network': 100,   # Mbps, shared by rx and tx
}

# Alert message templates
ALERT_MESSAGES = {
    'ram': "🧠 High RAM usage: {value} (threshold: {threshold}%)",
    'cpu': "🔥 High CPU usage: {value} (threshold: {threshold}%)",
    'disk': "💽 High disk usage on {disk_path}: {value} (threshold: {threshold}%)",
    'swap': "🔁 High swap usage: {value} (threshold: {threshold}%)",
    'load': "📈 High load average: {value} (threshold: {threshold}% per core)",
    'network': "🌐 High network traffic on {interface}: {value} (threshold: {threshold} Mbps)",
}

TEST_MESSAGE_TITLE = "🔄 SYSTEM MONITOR TEST MESSAGE"
