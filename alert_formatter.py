#!/usr/bin/env python3
# alert_formatter.py
"""
Alert and self-test message formatting.
Plain text by default; the bordered box layout when alert_format.enabled is set.
"""

import logging
from datetime import datetime, timezone

from alert_config import ALERT_MESSAGES, TEST_MESSAGE_TITLE

logger = logging.getLogger('resmon.formatter')


def format_date(moment=None):
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime('%Y-%m-%d %H:%M:%S')


class AlertFormatter:
    def __init__(self, settings, process_monitor=None):
        self.settings = settings
        self.fmt = settings.alert_format
        self.process_monitor = process_monitor

    # -------- public --------
    def format_alert(self, breach, snapshot):
        """Full alert text for one breach"""
        if self.fmt.get('enabled'):
            return self._format_box(breach, snapshot)
        return self._format_plain(breach, snapshot)

    def format_test_message(self, host, moment=None):
        date_str = format_date(moment)
        if self.fmt.get('enabled'):
            lines = [
                self.fmt['top_border'],
                self._line(TEST_MESSAGE_TITLE),
                self.fmt['title_border'],
                self._line(f"🖥️ Hostname:     {host.hostname}"),
                self._line(f"🌐 IP Address:   {host.ip}"),
                self._line(f"⏱️ Time:         {date_str}"),
                self.fmt['bottom_border'],
            ]
            return '\n'.join(lines)

        return (
            f"{TEST_MESSAGE_TITLE}\n\n"
            f"🖥️ Hostname: {host.hostname}\n"
            f"🌐 IP Address: {host.ip}\n"
            f"⏱️ Time: {date_str}"
        )

    def breach_line(self, breach):
        template = ALERT_MESSAGES.get(breach.kind, "{value}")
        return template.format(
            value=breach.formatted_value,
            threshold=_number(breach.threshold),
            disk_path=self.settings.disk_path,
            interface=self.settings.network_interface or 'default',
        )

    # -------- top consumers --------
    def _top_ram(self):
        if not (self.process_monitor and self.settings.include_top_processes):
            return None
        return self.process_monitor.top_processes(self.settings.top_processes_count)

    def _disk_breakdown(self):
        # du walks the filesystem; skip it entirely when disk monitoring is off
        if not (self.process_monitor and self.settings.include_top_processes):
            return None
        if not self.settings.is_enabled('disk'):
            return None
        return self.process_monitor.disk_breakdown(self.settings.top_processes_count)

    # -------- layouts --------
    def _format_plain(self, breach, snapshot):
        host = snapshot.host
        message = f"{self.settings.alert_message_title}\n\n"
        message += f"{self.breach_line(breach)}\n\n"
        message += f"Date: {format_date(snapshot.timestamp)}\n"
        message += f"Hostname: {host.hostname}\n"
        message += f"IP Address: {host.ip}\n"
        message += f"Uptime: {host.uptime}\n"
        message += f"OS: {host.os}\n"
        message += f"Kernel: {host.kernel}\n\n"

        message += f"RAM Usage: {snapshot.reading('ram')}% of {host.total_ram_gb}Gi\n"
        message += f"CPU Usage: {snapshot.reading('cpu')}%\n"
        message += f"Disk Usage: {snapshot.reading('disk')}% of {host.total_disk_gb}G"

        top_ram = self._top_ram()
        if top_ram:
            message += f"\n\nTop RAM Consumers:\n{top_ram}"
        breakdown = self._disk_breakdown()
        if breakdown:
            message += f"\n\nDisk Usage Breakdown:\n{breakdown}"

        return message

    def _format_box(self, breach, snapshot):
        fmt = self.fmt
        host = snapshot.host
        lines = [fmt['top_border'], self._title_line(), fmt['title_border']]
        lines.append(self._line(self.breach_line(breach)))
        lines.append(fmt['section_border'])

        if fmt.get('include_system_info'):
            lines.append(self._line(f"{fmt['date_emoji']} Date:         {format_date(snapshot.timestamp)}"))
            lines.append(self._line(f"{fmt['hostname_emoji']} Hostname:     {host.hostname}"))
            lines.append(self._line(f"{fmt['ip_emoji']} IP Address:   {host.ip}"))
            lines.append(self._line(f"{fmt['uptime_emoji']} Uptime:       {host.uptime}"))
            lines.append(self._line(f"{fmt['os_emoji']} OS:           {host.os}"))
            lines.append(self._line(f"{fmt['kernel_emoji']} Kernel:       {host.kernel}"))
            lines.append(fmt['section_border'])

        if fmt.get('include_resources'):
            lines.append(self._line(
                f"{fmt['ram_emoji']} RAM Usage:       {snapshot.reading('ram')}% of {host.total_ram_gb}Gi"))
            lines.append(self._line(f"{fmt['cpu_emoji']} CPU Usage:       {snapshot.reading('cpu')}%"))
            lines.append(self._line(
                f"{fmt['disk_emoji']} Disk Usage:      {snapshot.reading('disk')}% of {host.total_disk_gb}G"))
            lines.append(fmt['section_border'])

        if fmt.get('include_top_processes'):
            top_ram = self._top_ram()
            if top_ram:
                lines.append(self._line(f"{fmt['top_processes_emoji']} Top RAM Consumers:"))
                lines.extend(self._line(entry) for entry in top_ram.split('\n') if entry.strip())
                lines.append(fmt['section_border'])

        if fmt.get('include_disk_breakdown'):
            breakdown = self._disk_breakdown()
            if breakdown:
                lines.append(self._line(f"{fmt['disk_breakdown_emoji']} Disk Usage Breakdown:"))
                lines.extend(self._line(entry) for entry in breakdown.split('\n') if entry.strip())

        # Avoid a section border directly above the bottom border
        if lines[-1] == fmt['section_border']:
            lines.pop()
        lines.append(fmt['bottom_border'])
        return '\n'.join(lines)

    # -------- box helpers --------
    def _content_width(self):
        return self.fmt['width'] - len(self.fmt['line_prefix']) - len(self.fmt['line_suffix'])

    def _line(self, text):
        return f"{self.fmt['line_prefix']}{text.ljust(self._content_width())}{self.fmt['line_suffix']}"

    def _title_line(self):
        title = self.settings.alert_message_title
        width = self._content_width()
        align = self.fmt.get('title_align', 'center')
        if align == 'center':
            body = title.center(width)
        elif align == 'right':
            body = title.rjust(width)
        else:
            body = title.ljust(width)
        return f"{self.fmt['line_prefix']}{body}{self.fmt['line_suffix']}"


def _number(value):
    """80.0 -> '80', 7.5 -> '7.5'"""
    return f"{value:g}"
