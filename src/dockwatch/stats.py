"""
Statistics helpers for dockwatch.

This module turns raw docker stats payloads into numbers and numbers into
something printable:
  - calculate_cpu_percent / calculate_memory_usage / network_totals: the same
    arithmetic the docker CLI uses for `docker stats`
  - format_bytes: 1000-based units for the memory and network columns
  - ChartRenderer: ASCII sparklines for the CPU and memory history
  - summarize: container counts and totals for the header line
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .model import ContainerStatus, ContainerView

logger = logging.getLogger(__name__)

ONE_KB = 1000.0
ONE_MB = ONE_KB * 1000.0
ONE_GB = ONE_MB * 1000.0


def calculate_cpu_percent(stats: Dict[str, Any]) -> float:
    """CPU usage percentage from a one-shot stats payload."""
    cpu_stats = stats.get('cpu_stats') or {}
    precpu_stats = stats.get('precpu_stats') or {}
    cpu_usage = (cpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
    precpu_usage = (precpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
    system_cpu_usage = cpu_stats.get('system_cpu_usage', 0)
    presystem_cpu_usage = precpu_stats.get('system_cpu_usage', 0)
    online_cpus = cpu_stats.get('online_cpus') or len(
        (cpu_stats.get('cpu_usage') or {}).get('percpu_usage') or []
    ) or 1
    cpu_delta = cpu_usage - precpu_usage
    system_delta = system_cpu_usage - presystem_cpu_usage
    if system_delta > 0 and cpu_delta > 0:
        return (cpu_delta / system_delta) * online_cpus * 100.0
    return 0.0


def calculate_memory_usage(stats: Dict[str, Any]) -> Tuple[int, int]:
    """Return (used, limit) bytes, excluding page cache like `docker stats`."""
    memory_stats = stats.get('memory_stats') or {}
    usage = memory_stats.get('usage', 0) or 0
    limit = memory_stats.get('limit', 0) or 0
    detail = memory_stats.get('stats') or {}
    # cgroup v1 reports total_inactive_file, v2 inactive_file
    for key in ('total_inactive_file', 'inactive_file'):
        if key in detail and detail[key] < usage:
            usage -= detail[key]
            break
    return int(usage), int(limit)


def network_totals(stats: Dict[str, Any]) -> Tuple[int, int]:
    """Sum received/transmitted bytes across all interfaces."""
    rx = tx = 0
    for interface in (stats.get('networks') or {}).values():
        rx += interface.get('rx_bytes', 0)
        tx += interface.get('tx_bytes', 0)
    return rx, tx


def format_bytes(value: float) -> str:
    if value >= ONE_GB:
        return f"{value / ONE_GB:.2f} GB"
    if value >= ONE_MB:
        return f"{value / ONE_MB:.2f} MB"
    if value >= ONE_KB:
        return f"{value / ONE_KB:.2f} kB"
    return f"{int(value)} B"


class ChartRenderer:
    """Generates ASCII charts for statistics visualization."""

    SPARK_CHARS = "▁▂▃▄▅▆▇█"

    @staticmethod
    def sparkline(values: Sequence[float], width: int = 40, floor: float = 0.0) -> str:
        """Render the most recent `width` values, scaled from `floor` to the max."""
        if width <= 0:
            return ""
        if not values:
            return " " * width
        recent = list(values)[-width:]
        max_val = max(max(recent), floor)
        range_val = max_val - floor
        chars = ChartRenderer.SPARK_CHARS
        if range_val <= 0:
            line = chars[0] * len(recent)
        else:
            line = "".join(
                chars[int((max(v, floor) - floor) / range_val * (len(chars) - 1))]
                for v in recent
            )
        return line.rjust(width)


def summarize(containers: Iterable[ContainerView]) -> Dict[str, Any]:
    """Aggregate counts by status plus total CPU and memory of live samples."""
    status_counts: Dict[str, int] = defaultdict(int)
    total = 0
    total_cpu = 0.0
    total_memory = 0
    for view in containers:
        total += 1
        status_counts[view.container.status.value] += 1
        latest = view.latest
        if latest is not None and view.container.status is ContainerStatus.RUNNING:
            total_cpu += latest.cpu_percent
            total_memory += latest.memory_bytes
    stopped = sum(status_counts.get(s.value, 0) for s in
                  (ContainerStatus.EXITED, ContainerStatus.CREATED, ContainerStatus.DEAD))
    return {
        'total': total,
        'running': status_counts.get(ContainerStatus.RUNNING.value, 0),
        'paused': status_counts.get(ContainerStatus.PAUSED.value, 0),
        'stopped': stopped,
        'total_cpu': total_cpu,
        'total_memory': total_memory,
        'by_status': dict(status_counts),
    }


def cpu_series(view: ContainerView) -> List[float]:
    return [s.cpu_percent for s in view.metrics]


def memory_series(view: ContainerView) -> List[float]:
    return [float(s.memory_bytes) for s in view.metrics]
