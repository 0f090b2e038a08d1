"""
Host load reporting for admins.
"""

import html
import logging
import platform
import socket
import time
from datetime import datetime
from typing import List

import psutil

from models import SystemInfo
from utils import format_file_size

logger = logging.getLogger(__name__)


def collect_system_info(cpu_sample_seconds: float = 0.5) -> SystemInfo:
    """
    Gather host, CPU and memory figures.

    Blocking (samples CPU usage), run it in an executor. A failing section is
    recorded in ``errors`` and the rest is still collected.
    """
    info = SystemInfo(collected_at=datetime.now())

    try:
        info.hostname = socket.gethostname() or None
        info.os_name = platform.system() or None
        info.os_release = platform.release() or None
        info.architecture = platform.machine() or None
        info.uptime_seconds = max(time.time() - psutil.boot_time(), 0.0)
    except (OSError, psutil.Error) as error:
        info.errors.append(f"Host info: {error}")

    try:
        info.cpu_model = platform.processor() or None
        info.physical_cores = psutil.cpu_count(logical=False)
        info.logical_cores = psutil.cpu_count(logical=True)
        info.cpu_percent = psutil.cpu_percent(interval=cpu_sample_seconds)
    except (OSError, psutil.Error) as error:
        info.errors.append(f"CPU info: {error}")

    try:
        memory = psutil.virtual_memory()
        info.memory_total = memory.total
        info.memory_used = memory.used
        info.memory_available = memory.available
        info.memory_percent = memory.percent
        swap = psutil.swap_memory()
        info.swap_total = swap.total
        info.swap_used = swap.used
        info.swap_percent = swap.percent
    except (OSError, psutil.Error) as error:
        info.errors.append(f"Memory info: {error}")

    if info.errors:
        logger.warning("System info collected with errors: %s", "; ".join(info.errors))
    return info


def format_uptime(seconds: float) -> str:
    minutes, _ = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}д {hours}ч {minutes}м"
    if hours:
        return f"{hours}ч {minutes}м"
    return f"{minutes}м"


def format_system_info(info: SystemInfo) -> str:
    """Render a snapshot as an HTML message. Missing fields are skipped."""
    lines: List[str] = ["🖥️ <b>Нагрузка сервера</b>", ""]

    host_lines = []
    if info.hostname:
        host_lines.append(f"Хост: {html.escape(info.hostname)}")
    if info.os_name:
        host_lines.append(f"ОС: {html.escape(' '.join(filter(None, [info.os_name, info.os_release])))}")
    if info.architecture:
        host_lines.append(f"Архитектура: {html.escape(info.architecture)}")
    if info.uptime_seconds is not None:
        host_lines.append(f"Аптайм: {format_uptime(info.uptime_seconds)}")
    if host_lines:
        lines += ["<b>Хост</b>", *host_lines, ""]

    cpu_lines = []
    if info.cpu_model:
        cpu_lines.append(f"Модель: {html.escape(info.cpu_model)}")
    if info.physical_cores or info.logical_cores:
        cpu_lines.append(f"Ядра: {info.physical_cores or '?'} физ., {info.logical_cores or '?'} лог.")
    if info.cpu_percent is not None:
        cpu_lines.append(f"Загрузка: {info.cpu_percent:.1f}%")
    if cpu_lines:
        lines += ["⚡ <b>CPU</b>", *cpu_lines, ""]

    if info.memory_total is not None:
        lines += [
            "💾 <b>Память</b>",
            f"Всего: {format_file_size(info.memory_total)}",
            f"Занято: {format_file_size(info.memory_used)} ({info.memory_percent:.1f}%)",
            f"Доступно: {format_file_size(info.memory_available)}",
        ]
        if info.swap_total:
            lines.append(
                f"Swap: {format_file_size(info.swap_used)} / {format_file_size(info.swap_total)} "
                f"({info.swap_percent:.1f}%)"
            )
        lines.append("")

    if info.errors:
        lines += ["⚠️ <b>Предупреждения</b>", *(html.escape(item) for item in info.errors), ""]

    lines.append(f"🕐 {info.collected_at:%Y-%m-%d %H:%M:%S}")
    return "\n".join(lines)
