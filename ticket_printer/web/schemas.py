from __future__ import annotations

"""
Pydantic schemas for the Ticket Printer API (v1).

These models validate receipt submissions and printer/chooser requests.
Field length limits come from the validation context passed at runtime,
keeping env-driven constraints out of import time.

Receipt fields accept both snake_case and the camelCase names the POS UI
sends (e.g. `ticketId`).
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\t") or ord(c) == 127 for c in s)


def _limit(info: ValidationInfo, name: str, default: int) -> int:
    limits = (info.context or {}).get("limits", {})
    try:
        return int(limits.get(name, default))
    except (TypeError, ValueError):
        return default


class ReceiptRequest(BaseModel):
    """One ticket sale to print as customer + teller copies."""

    model_config = ConfigDict(populate_by_name=True)

    event_description: Optional[str] = Field(default=None, alias="eventDescription", examples=["Summer Concert"])
    category_name: Optional[str] = Field(default=None, alias="categoryName", examples=["VIP"])
    teller_email: Optional[str] = Field(default=None, alias="tellerEmail", examples=["teller@example.com"])
    ticket_id: Optional[str] = Field(default=None, alias="ticketId", examples=["T-1"])
    price: Optional[str] = Field(default=None, examples=["50"])
    quantity: Optional[str] = Field(default=None, examples=["2"])
    venue_name: Optional[str] = Field(default=None, alias="venueName", examples=["City Arena"])
    event_date_ms: Optional[int] = Field(
        default=None,
        alias="eventDateMs",
        description="Event start as epoch milliseconds",
        ge=0,
    )
    qr_text: Optional[str] = Field(default=None, alias="qrText", description="Data encoded in the customer QR symbol")

    @field_validator("price", "quantity", mode="before")
    @classmethod
    def _numbers_as_text(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("expected text or number")
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator(
        "event_description",
        "category_name",
        "teller_email",
        "ticket_id",
        "price",
        "quantity",
        "venue_name",
    )
    @classmethod
    def _text_rules(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        max_len = _limit(info, "MAX_FIELD_LEN", 120)
        if len(v) > max_len:
            raise ValueError(f"{info.field_name} too long (max {max_len})")
        if _has_control_chars(v):
            raise ValueError(f"{info.field_name}: control characters not allowed")
        return v

    @field_validator("qr_text")
    @classmethod
    def _qr_rules(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        max_len = _limit(info, "MAX_QR_LEN", 512)
        if len(v.encode("utf-8")) > max_len:
            raise ValueError(f"qr text too long (max {max_len} bytes)")
        if _has_control_chars(v):
            raise ValueError("qr text invalid")
        return v

    def to_content(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=False)


class Device(BaseModel):
    id: str = Field(default="", max_length=128, description="Opaque device id (BLE address)")
    name: Optional[str] = Field(default="", max_length=128)

    @field_validator("id", "name")
    @classmethod
    def _strip(cls, v: Optional[str]) -> str:
        return (v or "").strip()


class ConnectRequest(BaseModel):
    """Connect to `device`, or scan and open the chooser when omitted."""

    device: Optional[Device] = None

    @model_validator(mode="after")
    def _device_needs_id(self) -> "ConnectRequest":
        if self.device is not None and not self.device.id:
            raise ValueError("device id required")
        return self


class ReconnectRequest(BaseModel):
    device: Device

    @model_validator(mode="after")
    def _id_or_name(self) -> "ReconnectRequest":
        if not (self.device.id or self.device.name):
            raise ValueError("device id or name required")
        return self


class ChooserSelectRequest(BaseModel):
    device_id: str = Field(min_length=1, alias="deviceId")

    model_config = ConfigDict(populate_by_name=True)


class Links(BaseModel):
    self: str
    job: Optional[str] = None


class JobAcceptedResponse(BaseModel):
    id: str
    status: str = "queued"
    links: Links


__all__ = [
    "ChooserSelectRequest",
    "ConnectRequest",
    "Device",
    "JobAcceptedResponse",
    "Links",
    "ReceiptRequest",
    "ReconnectRequest",
]
