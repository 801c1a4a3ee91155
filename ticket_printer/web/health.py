from __future__ import annotations

"""
Health endpoint for Ticket Printer.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Background worker status and queue size
- Printer connection state, including degraded-handle binding
- Bluetooth availability (probed only with ?probe=1, since it scans)
"""

from typing import Any, Dict

from flask import Blueprint, current_app, request

from ticket_printer.printing.worker import call_on_worker, get_runtime, printer_status, worker_status

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"status": "ok"}
    status.update(worker_status())

    try:
        if request.args.get("probe") in ("1", "true", "yes"):
            call_on_worker(lambda: get_runtime().link.is_available())
        printer = printer_status()
    except Exception as e:
        current_app.logger.warning("Printer status unavailable: %s", e)
        status["status"] = "degraded"
        status["reason"] = "printer_status_failed"
        return status, 200

    status["printer"] = printer
    if printer.get("ble_available") is False:
        status["status"] = "degraded"
        status["reason"] = "ble_unavailable"
    elif printer.get("state") != "connected":
        status["status"] = "degraded"
        status["reason"] = "connection_lost" if printer.get("connection_lost") else "printer_not_connected"
    elif printer.get("degraded"):
        status["status"] = "degraded"
        status["reason"] = "degraded_characteristic"
    return status, 200
