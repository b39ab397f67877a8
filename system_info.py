#!/usr/bin/env python3
import platform
import psutil
import socket
import time
import logging
from dataclasses import dataclass

logger = logging.getLogger('resmon.system_info')

FALLBACK_IP = "127.0.0.1"
UNKNOWN = "Unknown"


@dataclass(frozen=True)
class HostIdentity:
    hostname: str
    ip: str = FALLBACK_IP
    os: str = UNKNOWN
    kernel: str = UNKNOWN
    uptime: str = UNKNOWN
    cpu_count: int = 1
    total_ram_gb: float = 0.0
    total_disk_gb: float = 0.0

    def as_dict(self):
        return {
            "hostname": self.hostname,
            "ip": self.ip,
            "os": self.os,
            "kernel": self.kernel,
            "uptime": self.uptime,
            "cpu_count": self.cpu_count,
            "total_ram_gb": self.total_ram_gb,
            "total_disk_gb": self.total_disk_gb,
        }


def _is_usable(ip):
    return bool(ip) and not ip.startswith("127.")


def get_ip_address():
    """
    Get the primary IPv4 address of this host.
    Falls back to 127.0.0.1 when no other address can be found.
    """
    # Method 1: Connect to external address to determine routing IP
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.settimeout(2)
        try:
            s.connect(("8.8.8.8", 80))  # UDP connect sends no data
            ip = s.getsockname()[0]
        finally:
            s.close()
        if _is_usable(ip):
            return ip
    except OSError:
        pass

    # Method 2: First non-loopback IPv4 on any interface
    try:
        for interface, addrs in psutil.net_if_addrs().items():
            if interface.startswith('lo'):
                continue
            for addr in addrs:
                if addr.family == socket.AF_INET and _is_usable(addr.address):
                    return addr.address
    except (OSError, psutil.Error):
        pass

    return FALLBACK_IP


def get_os_description():
    try:
        release = platform.freedesktop_os_release()
        name = release.get("NAME") or release.get("ID") or platform.system()
        version = release.get("VERSION_ID") or release.get("VERSION", "")
        return f"{name} {version}".strip()
    except (OSError, AttributeError):
        return f"{platform.system()} {platform.release()}".strip() or UNKNOWN


def format_uptime(seconds):
    """Render an uptime as '3d 4h 5m', '4h 5m' or '5m'"""
    seconds = max(0, int(seconds))
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def describe_host(disk_path='/'):
    """
    Best-effort host identity for alerts and persisted rows.
    Never raises: on failure returns hostname plus placeholder fields.
    """
    try:
        hostname = socket.gethostname() or UNKNOWN
    except OSError as e:
        logger.error(f"[SystemInfo] Cannot read hostname: {e}")
        hostname = UNKNOWN

    try:
        uname = platform.uname()
        svmem = psutil.virtual_memory()
        disk = psutil.disk_usage(disk_path)

        return HostIdentity(
            hostname=hostname,
            ip=get_ip_address(),
            os=get_os_description(),
            kernel=uname.release or UNKNOWN,
            uptime=format_uptime(time.time() - psutil.boot_time()),
            cpu_count=psutil.cpu_count(logical=True) or 1,
            total_ram_gb=round(svmem.total / (1024 ** 3), 1),
            total_disk_gb=round(disk.total / (1024 ** 3), 1),
        )
    except Exception as e:
        logger.error(f"[SystemInfo] Error getting system info: {e}")
        return HostIdentity(hostname=hostname)
