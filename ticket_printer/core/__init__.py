"""
Core utilities for Ticket Printer.

This package groups non-Flask helpers used across the app:
- config: config path resolution, JSON load/save, printer settings defaults
- logging: request/job id aware logging filters/formatters and root logger config

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .config import (
    PRINTER_DEFAULTS,
    default_config_path,
    env_int,
    get_config_path,
    load_config,
    printer_settings,
    save_config,
)
from .logging import (
    JsonFormatter,
    RequestIdFilter,
    configure_logging,
    current_job_id,
)

__all__ = [
    # config
    "PRINTER_DEFAULTS",
    "default_config_path",
    "env_int",
    "get_config_path",
    "load_config",
    "printer_settings",
    "save_config",
    # logging
    "configure_logging",
    "current_job_id",
    "RequestIdFilter",
    "JsonFormatter",
]
