"""
Background worker, job state, and printer runtime for Ticket Printer.

This module owns:
- A daemon thread running the asyncio event loop that all BLE work happens on
- The PrinterRuntime (chooser, connection manager, channel, composer), built
  once from the saved config and passed around explicitly from there
- An in-memory job registry with a basic lifecycle (queued -> running -> success/error)
- Thread-safe helpers for Flask routes: enqueue jobs, query status, drive the
  device chooser

Jobs are consumed one at a time by a single coroutine, so sends never
interleave on the printer characteristic. It is Flask-agnostic.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ticket_printer.core.config import load_config, printer_settings
from ticket_printer.core.logging import current_job_id
from ticket_printer.printing.ble import BleakTransport, DeviceDescriptor, PrinterLink
from ticket_printer.printing.channel import CommandChannel
from ticket_printer.printing.chooser import DeviceChooser
from ticket_printer.printing.errors import PrinterError
from ticket_printer.printing.qr import QrOptions
from ticket_printer.printing.receipt import ReceiptComposer, ReceiptContent

logger = logging.getLogger(__name__)

JOBS: Dict[str, Dict[str, Any]] = {}
JOBS_LOCK = threading.RLock()
JOBS_MAX = int(os.environ.get("TICKETPRINTER_JOBS_MAX", "200"))

# Upper bound for synchronous calls made from request threads.
CALL_TIMEOUT = float(os.environ.get("TICKETPRINTER_CALL_TIMEOUT", "15"))

WORKER_THREAD: Optional[threading.Thread] = None
WORKER_STARTED = False
LOOP: Optional[asyncio.AbstractEventLoop] = None
JOB_QUEUE: Optional[asyncio.Queue] = None
RUNTIME: Optional["PrinterRuntime"] = None
_START_LOCK = threading.Lock()
_RUNTIME_LOCK = threading.Lock()


class PrinterRuntime:
    """
    The printer objects for one process, wired together explicitly:
    chooser -> connection manager -> channel -> composer.
    """

    def __init__(self, settings: Mapping[str, Any], transport: Any = None) -> None:
        self.settings = dict(settings)
        self.chooser = DeviceChooser(timeout=float(settings["chooser_timeout_seconds"]))
        self.link = PrinterLink(
            transport or BleakTransport(scan_timeout=float(settings["scan_timeout_seconds"])),
            self.chooser,
        )
        self.channel = CommandChannel(self.link)
        self.composer = ReceiptComposer(
            self.channel,
            header=str(settings["shop_header"]),
            footer=str(settings["footer_text"]),
            qr_options=QrOptions(
                module_size=int(settings["qr_module_size"]),
                error_correction=str(settings["qr_error_correction"]),
            ),
            date_format=str(settings["date_format"]),
        )

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]] = None) -> "PrinterRuntime":
        return cls(printer_settings(config))


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _prune_jobs_if_needed() -> None:
    with JOBS_LOCK:
        while len(JOBS) > JOBS_MAX:
            oldest_id = min(JOBS.values(), key=lambda j: j.get("created_at", ""))["id"]
            JOBS.pop(oldest_id, None)


def _create_job(kind: str, meta: Optional[Dict[str, Any]] = None) -> str:
    job_id = uuid.uuid4().hex
    now = _utc_now_iso()
    job = {
        "id": job_id,
        "type": kind,
        "status": "queued",
        "created_at": now,
        "updated_at": now,
    }
    if meta:
        job.update(meta)
    with JOBS_LOCK:
        JOBS[job_id] = job
        _prune_jobs_if_needed()
    return job_id


def _update_job(job_id: Optional[str], **updates: Any) -> None:
    if not job_id:
        return
    with JOBS_LOCK:
        job = JOBS.get(job_id)
        if not job:
            return
        job.update(updates)
        job["updated_at"] = _utc_now_iso()


# ---------------------------------------------------------------------------
# Runtime / loop management
# ---------------------------------------------------------------------------


def get_runtime() -> PrinterRuntime:
    """Return the process runtime, building it from the saved config on first use."""
    global RUNTIME
    with _RUNTIME_LOCK:
        if RUNTIME is None:
            try:
                cfg = load_config()
            except Exception as e:
                logger.warning(f"Could not read config, using printer defaults: {e}")
                cfg = None
            RUNTIME = PrinterRuntime.from_config(cfg)
        return RUNTIME


def set_runtime(runtime: Optional[PrinterRuntime]) -> None:
    """Replace the process runtime (tests, or after settings change)."""
    global RUNTIME
    with _RUNTIME_LOCK:
        RUNTIME = runtime


async def _run_job(runtime: PrinterRuntime, job: Dict[str, Any]) -> Dict[str, Any]:
    kind = job.get("type")
    if kind == "receipt":
        content = ReceiptContent.from_mapping(job.get("payload") or {})
        await runtime.composer.print_receipt(content)
        return {}
    if kind == "test":
        device = runtime.link.device
        await runtime.composer.print_test_page(device.name if device else None)
        return {}
    if kind == "connect":
        target = job.get("device")
        if target:
            descriptor = DeviceDescriptor(id=target["id"], name=target.get("name") or "")
        else:
            found = await runtime.link.scan()
            if not found:
                raise PrinterError("No device selected")
            descriptor = found[0]
        characteristic = await runtime.link.connect(descriptor)
        return {"device": descriptor.to_dict(), "degraded": characteristic.is_degraded}
    if kind == "reconnect":
        saved = job.get("device") or {}
        ok = await runtime.link.auto_reconnect(DeviceDescriptor(id=saved.get("id") or "", name=saved.get("name") or ""))
        return {"reconnected": ok}
    raise ValueError(f"unknown_job_type: {kind}")


async def _print_worker() -> None:
    """
    Consume queued jobs forever. Never raises; logs and updates job status.
    """
    assert JOB_QUEUE is not None
    while True:
        job = await JOB_QUEUE.get()
        job_id = job.get("job_id")
        token = current_job_id.set(job_id)
        try:
            _update_job(job_id, status="running")
            result = await _run_job(get_runtime(), job)
            _update_job(job_id, status="success", **result)
        except PrinterError as e:
            logger.error(f"Job {job_id} failed: {e}")
            _update_job(job_id, status="error", error=e.kind, message=str(e))
        except Exception as e:
            logger.exception(f"Job {job_id} failed: {e}")
            _update_job(job_id, status="error", error="internal_error", message=str(e))
        finally:
            current_job_id.reset(token)
            JOB_QUEUE.task_done()


def _run_loop(loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
    global JOB_QUEUE
    asyncio.set_event_loop(loop)
    JOB_QUEUE = asyncio.Queue()
    loop.create_task(_print_worker())
    ready.set()
    loop.run_forever()


def ensure_worker() -> None:
    """
    Ensure the background loop thread is started (idempotent).
    """
    global WORKER_THREAD, WORKER_STARTED, LOOP
    with _START_LOCK:
        if WORKER_STARTED and WORKER_THREAD and WORKER_THREAD.is_alive():
            return
        loop = asyncio.new_event_loop()
        ready = threading.Event()
        t = threading.Thread(target=_run_loop, args=(loop, ready), daemon=True, name="ticket-printer-worker")
        t.start()
        ready.wait()
        LOOP = loop
        WORKER_THREAD = t
        WORKER_STARTED = True
    logger.info("Background printer worker started")


def call_on_worker(fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None) -> Any:
    """
    Run `fn(*args)` on the worker loop and return its result. Coroutine
    results are awaited there. Exceptions propagate to the caller.
    """
    ensure_worker()
    assert LOOP is not None

    async def _call() -> Any:
        result = fn(*args)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    fut = asyncio.run_coroutine_threadsafe(_call(), LOOP)
    return fut.result(CALL_TIMEOUT if timeout is None else timeout)


def _enqueue(kind: str, job: Dict[str, Any], meta: Optional[Dict[str, Any]] = None) -> str:
    ensure_worker()
    assert LOOP is not None and JOB_QUEUE is not None
    job_id = _create_job(kind, meta=meta)
    job.update({"type": kind, "job_id": job_id})
    LOOP.call_soon_threadsafe(JOB_QUEUE.put_nowait, job)
    logger.info("Enqueued %s job id=%s", kind, job_id)
    return job_id


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def enqueue_receipt(content: Mapping[str, Any]) -> str:
    """
    Enqueue a 'receipt' job for a ReceiptContent-shaped mapping. Returns the job id.
    """
    payload = dict(content)
    return _enqueue("receipt", {"payload": payload}, meta={"ticket_id": payload.get("ticket_id") or None})


def enqueue_test_print(origin: Optional[str] = None) -> str:
    return _enqueue("test", {}, meta={"origin": origin} if origin else None)


def enqueue_connect(device: Optional[Mapping[str, Any]] = None) -> str:
    """
    Enqueue a 'connect' job. Without a device the job scans and waits on the
    device chooser first.
    """
    return _enqueue("connect", {"device": dict(device) if device else None})


def enqueue_reconnect(device: Mapping[str, Any]) -> str:
    return _enqueue("reconnect", {"device": dict(device)})


def scan_devices() -> List[Dict[str, Any]]:
    """
    Scan and wait on the device chooser. Blocks the calling thread until a
    device is picked, the chooser is cancelled, or its deadline passes.
    Returns the chosen device as a one-item list, or an empty list.
    """
    runtime = get_runtime()
    wait = float(runtime.settings["scan_timeout_seconds"]) + float(runtime.settings["chooser_timeout_seconds"])
    found = call_on_worker(runtime.link.scan, timeout=wait + CALL_TIMEOUT)
    return [d.to_dict() for d in found]


def disconnect_printer() -> None:
    call_on_worker(lambda: get_runtime().link.disconnect())


def printer_status() -> Dict[str, Any]:
    if not (WORKER_STARTED and LOOP is not None):
        return get_runtime().link.status()
    return call_on_worker(lambda: get_runtime().link.status())


def chooser_pending() -> Optional[Dict[str, Any]]:
    return call_on_worker(lambda: get_runtime().chooser.pending())


def chooser_select(device_id: str) -> bool:
    return bool(call_on_worker(lambda: get_runtime().chooser.select(device_id)))


def chooser_offer(device: Mapping[str, Any]) -> bool:
    descriptor = DeviceDescriptor(id=str(device["id"]), name=str(device.get("name") or ""))
    return bool(call_on_worker(lambda: get_runtime().chooser.offer(descriptor)))


def chooser_cancel() -> bool:
    return bool(call_on_worker(lambda: get_runtime().chooser.cancel()))


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    with JOBS_LOCK:
        job = JOBS.get(job_id)
        return dict(job) if job else None


def list_jobs() -> List[Dict[str, Any]]:
    """
    Return a list of jobs sorted by created_at descending.
    """
    with JOBS_LOCK:
        items = [dict(v) for v in JOBS.values()]
    items.sort(key=lambda j: j.get("created_at", ""), reverse=True)
    return items


def worker_status() -> Dict[str, Any]:
    alive = bool(WORKER_THREAD) and WORKER_THREAD.is_alive()  # type: ignore[union-attr]
    return {
        "worker_started": WORKER_STARTED,
        "worker_alive": alive,
        "queue_size": JOB_QUEUE.qsize() if JOB_QUEUE is not None else 0,
    }


__all__ = [
    "JOBS",
    "JOBS_MAX",
    "PrinterRuntime",
    "call_on_worker",
    "chooser_cancel",
    "chooser_offer",
    "chooser_pending",
    "chooser_select",
    "disconnect_printer",
    "enqueue_connect",
    "enqueue_receipt",
    "enqueue_reconnect",
    "enqueue_test_print",
    "ensure_worker",
    "get_job",
    "get_runtime",
    "list_jobs",
    "printer_status",
    "scan_devices",
    "set_runtime",
    "worker_status",
]
