"""
Config utilities for Ticket Printer.

Responsibilities:
- Resolve the config path with environment and XDG support
- Provide JSON load/save helpers for the app's config
- Merge printer presentation/tuning settings with their defaults

The config holds receipt text and BLE tuning only. The bound printer is
runtime state and is never written here.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

PRINTER_DEFAULTS: dict[str, Any] = {
    "shop_header": "E-TICKET",
    "footer_text": "Thank you for your purchase!",
    "qr_module_size": 6,
    "qr_error_correction": "M",
    "date_format": "%Y-%m-%d %H:%M",
    "scan_timeout_seconds": 8.0,
    "chooser_timeout_seconds": 30.0,
}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except Exception:
        return default


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/ticketprinter/config.json
    2) ~/.config/ticketprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "ticketprinter" / "config.json")
    return str(Path.home() / ".config" / "ticketprinter" / "config.json")


def get_config_path() -> str:
    """
    Return the config path honoring TICKETPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("TICKETPRINTER_CONFIG_PATH", default_config_path())


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


def printer_settings(config: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
    """
    Return PRINTER_DEFAULTS overlaid with non-empty values from `config`.
    Numeric settings that fail to parse keep their defaults.
    """
    merged = dict(PRINTER_DEFAULTS)
    for key in PRINTER_DEFAULTS:
        val = (config or {}).get(key)
        if val is None or (isinstance(val, str) and not val.strip()):
            continue
        merged[key] = val
    for key, cast in (("qr_module_size", int), ("scan_timeout_seconds", float), ("chooser_timeout_seconds", float)):
        try:
            merged[key] = cast(merged[key])
        except (TypeError, ValueError):
            merged[key] = PRINTER_DEFAULTS[key]
    merged["qr_error_correction"] = str(merged["qr_error_correction"]).upper()
    return merged


__all__ = [
    "PRINTER_DEFAULTS",
    "default_config_path",
    "env_int",
    "get_config_path",
    "load_config",
    "printer_settings",
    "save_config",
]
