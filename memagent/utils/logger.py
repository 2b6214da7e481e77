"""
Memory Agent Logger & Memory Profiler
======================================
Provides:
  - Rich-formatted console logging (colored, timestamped)
  - Daily plain-text log files for later analysis
  - RAM usage monitoring via psutil

Usage:
    from memagent.utils.logger import get_logger, log_memory
    logger = get_logger("core.controller")
    logger.info("Session opened")
    log_memory(logger)   # Logs current RAM usage
"""

import logging
import os
from datetime import datetime

import psutil
from rich.logging import RichHandler

from memagent.utils.config import load_config, project_root


def get_logger(name: str) -> logging.Logger:
    """
    Create a logger with Rich formatting.

    Args:
        name: Logger name (e.g., "core.controller", "memory.index").
              This appears in log output.

    Returns:
        Configured logging.Logger instance.
    """
    logger = logging.getLogger(f"memagent.{name}")

    # Avoid adding duplicate handlers if logger already exists
    if logger.handlers:
        return logger

    config = load_config()
    log_level = config["system"].get("log_level", "INFO").upper()
    log_dir = os.path.expanduser(config["system"].get("log_dir", "logs"))

    log_path = log_dir if os.path.isabs(log_dir) else os.path.join(project_root(), log_dir)
    os.makedirs(log_path, exist_ok=True)

    logger.setLevel(logging.DEBUG)

    console_handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_path=False,
    )
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    today = datetime.now().strftime("%Y-%m-%d")
    file_handler = logging.FileHandler(
        os.path.join(log_path, f"memagent_{today}.log"),
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)  # Always capture everything in file
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    return logger


def get_memory_usage_mb() -> float:
    """Current process RSS in megabytes."""
    process = psutil.Process(os.getpid())
    return process.memory_info().rss / (1024 * 1024)


def get_system_memory_mb() -> dict:
    """
    Get system-wide memory stats.

    Returns:
        Dict with total, available, used, and percent memory usage.
    """
    mem = psutil.virtual_memory()
    return {
        "total_mb": mem.total / (1024 * 1024),
        "available_mb": mem.available / (1024 * 1024),
        "used_mb": mem.used / (1024 * 1024),
        "percent": mem.percent,
    }


def log_memory(logger: logging.Logger) -> dict:
    """
    Log current memory usage and check process RSS against configured thresholds.

    Args:
        logger: The logger instance to write to.

    Returns:
        Dict with process_mb, system stats, and threshold status.
    """
    config = load_config()
    warning_mb = config["system"].get("memory_warning_threshold_mb", 1500)
    critical_mb = config["system"].get("memory_critical_threshold_mb", 3000)

    process_mb = get_memory_usage_mb()
    system = get_system_memory_mb()

    status = "OK"
    if process_mb > critical_mb:
        status = "CRITICAL"
        logger.error(
            f"🔴 MEMORY CRITICAL: process uses {process_mb:.0f}MB "
            f"(threshold: {critical_mb}MB)"
        )
    elif process_mb > warning_mb:
        status = "WARNING"
        logger.warning(
            f"🟡 MEMORY WARNING: process uses {process_mb:.0f}MB "
            f"(threshold: {warning_mb}MB)"
        )
    else:
        logger.info(
            f"🟢 RAM: Process={process_mb:.0f}MB | "
            f"System={system['used_mb']:.0f}MB/{system['total_mb']:.0f}MB "
            f"({system['percent']}%)"
        )

    return {
        "process_mb": process_mb,
        "system": system,
        "status": status,
    }
