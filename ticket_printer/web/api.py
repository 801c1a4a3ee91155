from __future__ import annotations

"""
JSON API (v1) for Ticket Printer.

Endpoints:
- POST /api/v1/receipts            : Print a ticket receipt (async). Returns 202 + Location
- GET  /api/v1/jobs                : List recent jobs
- GET  /api/v1/jobs/<job_id>       : Fetch job status
- GET  /api/v1/printer             : Connection state snapshot
- POST /api/v1/printer/scan        : Scan and wait on the chooser; returns the picked device
- POST /api/v1/printer/connect     : Connect to {"device": {...}} or scan + chooser (async)
- POST /api/v1/printer/reconnect   : Best-effort reconnect to a saved device (async)
- POST /api/v1/printer/disconnect  : Drop the connection
- POST /api/v1/printer/test        : Print a test page (async)
- GET  /api/v1/chooser             : Open chooser request and its candidates
- POST /api/v1/chooser/select      : Resolve the open chooser request with {"deviceId": ...}
- POST /api/v1/chooser/devices     : Offer a newly seen candidate to the open request
- POST /api/v1/chooser/cancel      : Resolve the open chooser request empty
"""

from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Dict, Type

from flask import Blueprint, current_app, jsonify, request, url_for
from pydantic import BaseModel, ValidationError

from ticket_printer import csrf
from ticket_printer.core.config import env_int
from ticket_printer.printing.errors import NotAvailable, PrinterError
from ticket_printer.printing.worker import (
    chooser_cancel,
    chooser_offer,
    chooser_pending,
    chooser_select,
    disconnect_printer,
    enqueue_connect,
    enqueue_receipt,
    enqueue_reconnect,
    enqueue_test_print,
    ensure_worker,
    get_job,
    list_jobs,
    printer_status,
    scan_devices,
)

from . import schemas

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")
csrf.exempt(api_bp)

MAX_FIELD_LEN = env_int("TICKETPRINTER_MAX_FIELD_LEN", 120)
MAX_QR_LEN = env_int("TICKETPRINTER_MAX_QR_LEN", 512)


def _json_error(msg: str, code: int = 400, **extra: Any):
    body: Dict[str, Any] = {"error": msg}
    body.update(extra)
    return jsonify(body), code


def _validate(model: Type[BaseModel], data: Any, **context: Any):
    """
    Validate `data` against `model`. Returns (instance, None) or (None, error response).
    """
    try:
        return model.model_validate(data, context=context or None), None
    except ValidationError as e:
        try:
            msg = e.errors()[0].get("msg") or str(e)
        except Exception:
            msg = str(e)
        return None, _json_error(msg, 400)


def _accepted(job_id: str):
    api_href = url_for("api.job_status", job_id=job_id)
    resp_model = schemas.JobAcceptedResponse(id=job_id, status="queued", links=schemas.Links(self=api_href, job=api_href))
    resp = jsonify(resp_model.model_dump())
    resp.status_code = 202
    resp.headers["Location"] = api_href
    return resp


def _printer_call(fn, *args):
    """
    Run a synchronous printer helper. Printer failures map to 503 (no adapter)
    or 502 with the error kind; a worker that does not answer maps to 504.
    """
    try:
        return fn(*args), None
    except NotAvailable as e:
        return None, _json_error(e.kind, 503, message=str(e))
    except PrinterError as e:
        current_app.logger.warning("Printer call failed: %s", e)
        return None, _json_error(e.kind, 502, message=str(e))
    except FuturesTimeout:
        current_app.logger.error("Printer worker did not answer in time")
        return None, _json_error("worker_timeout", 504)
    except Exception as e:
        current_app.logger.exception("Printer call failed: %s", e)
        return None, _json_error(f"Printer call failed: {e!s}", 500)


def _enqueue(fn, *args):
    try:
        ensure_worker()
        return fn(*args), None
    except Exception as e:
        current_app.logger.exception("Failed to enqueue job: %s", e)
        return None, _json_error(f"Failed to enqueue job: {e!s}", 500)


@api_bp.post("/receipts")
def submit_receipt():
    """
    Validate a ReceiptContent payload and enqueue it for printing.
    """
    if not request.is_json:
        return _json_error("Expected application/json body", 415)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("invalid JSON payload", 400)

    req, err = _validate(
        schemas.ReceiptRequest,
        data,
        limits={"MAX_FIELD_LEN": MAX_FIELD_LEN, "MAX_QR_LEN": MAX_QR_LEN},
    )
    if err:
        return err

    job_id, err = _enqueue(enqueue_receipt, req.to_content())
    if err:
        return err
    current_app.logger.info("Receipt job %s queued (ticket=%s)", job_id, req.ticket_id or "-")
    return _accepted(job_id)


@api_bp.get("/jobs")
def jobs_list():
    return {"jobs": list_jobs()}


@api_bp.get("/jobs/<job_id>")
def job_status(job_id: str):
    """
    Return job status JSON, 404 if not found.
    """
    job = get_job(job_id)
    if job:
        return job
    return _json_error("not_found", 404)


@api_bp.get("/printer")
def printer_state():
    status, err = _printer_call(printer_status)
    if err:
        return err
    return status


@api_bp.post("/printer/connect")
def printer_connect():
    req, err = _validate(schemas.ConnectRequest, request.get_json(silent=True) or {})
    if err:
        return err
    device = req.device.model_dump() if req.device else None
    job_id, err = _enqueue(enqueue_connect, device)
    if err:
        return err
    return _accepted(job_id)


@api_bp.post("/printer/reconnect")
def printer_reconnect():
    req, err = _validate(schemas.ReconnectRequest, request.get_json(silent=True) or {})
    if err:
        return err
    job_id, err = _enqueue(enqueue_reconnect, req.device.model_dump())
    if err:
        return err
    return _accepted(job_id)


@api_bp.post("/printer/scan")
def printer_scan():
    found, err = _printer_call(scan_devices)
    if err:
        return err
    return {"devices": found}


@api_bp.post("/printer/disconnect")
def printer_disconnect():
    _, err = _printer_call(disconnect_printer)
    if err:
        return err
    current_app.logger.info("Printer disconnected on request")
    return printer_status()


@api_bp.post("/printer/test")
def printer_test():
    job_id, err = _enqueue(enqueue_test_print, "api")
    if err:
        return err
    return _accepted(job_id)


@api_bp.get("/chooser")
def chooser_state():
    pending = chooser_pending()
    if pending is None:
        return {"open": False}
    return {"open": True, **pending}


@api_bp.post("/chooser/select")
def chooser_choose():
    req, err = _validate(schemas.ChooserSelectRequest, request.get_json(silent=True) or {})
    if err:
        return err
    if not chooser_select(req.device_id):
        return _json_error("no_matching_request", 409)
    return {"selected": req.device_id}


@api_bp.post("/chooser/devices")
def chooser_device_seen():
    req, err = _validate(schemas.Device, request.get_json(silent=True) or {})
    if err:
        return err
    if not req.id:
        return _json_error("device id required", 400)
    if not chooser_offer(req.model_dump()):
        return _json_error("no_open_request", 409)
    return {"offered": req.id}


@api_bp.post("/chooser/cancel")
def chooser_dismiss():
    return {"cancelled": chooser_cancel()}
