from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

DEFAULT_REPORT_OWNER = "General"

# Python attribute -> persisted JSON key.
TOTALS_JSON_KEYS: dict[str, str] = {
    "mono": "mono",
    "color": "color",
    "blank": "blank",
    "total": "total",
    "adobe_pdf": "adobePdf",
    "copy": "copy",
    "ms_excel": "msExcel",
    "ms_powerpoint": "msPowerPoint",
    "ms_word": "msWord",
    "simplex": "simplex",
    "duplex": "duplex",
    "other_application": "otherApplication",
    "print": "print",
}


@dataclass
class Totals:
    mono: int = 0
    color: int = 0
    blank: int = 0
    total: int = 0
    adobe_pdf: int = 0
    copy: int = 0
    ms_excel: int = 0
    ms_powerpoint: int = 0
    ms_word: int = 0
    simplex: int = 0
    duplex: int = 0
    other_application: int = 0
    print: int = 0

    @classmethod
    def zero(cls) -> Totals:
        return cls()

    def __add__(self, other: Totals) -> Totals:
        if not isinstance(other, Totals):
            return NotImplemented
        return Totals(**{name: getattr(self, name) + getattr(other, name) for name in TOTALS_JSON_KEYS})

    def add(self, other: Totals) -> None:
        for name in TOTALS_JSON_KEYS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def get(self, key: str) -> int:
        """Look up a counter by attribute name or JSON key."""
        return getattr(self, _attribute_for(key))

    def is_valid(self) -> bool:
        for name in TOTALS_JSON_KEYS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if not math.isfinite(value) or value < 0:
                return False
        return True

    def copy_totals(self) -> Totals:
        return Totals(**{name: getattr(self, name) for name in TOTALS_JSON_KEYS})

    def to_dict(self) -> dict[str, int]:
        return {json_key: getattr(self, name) for name, json_key in TOTALS_JSON_KEYS.items()}

    @classmethod
    def from_dict(cls, payload: Any) -> Totals:
        if not isinstance(payload, dict):
            return cls()
        values: dict[str, int] = {}
        for name, json_key in TOTALS_JSON_KEYS.items():
            values[name] = _coerce_counter(payload.get(json_key, payload.get(name)))
        return cls(**values)


def sum_totals(items: list[Totals]) -> Totals:
    result = Totals.zero()
    for item in items:
        result.add(item)
    return result


@dataclass
class PrinterUsage:
    device_model: str
    # Persisted as "ipHostname": the vendor column holds the printer's display
    # name, not a hostname.
    device_name: str
    ip_address: str
    totals: Totals = field(default_factory=Totals)

    @property
    def key(self) -> tuple[str, str]:
        return (self.device_name, self.ip_address)

    def copy_usage(self) -> PrinterUsage:
        return PrinterUsage(
            device_model=self.device_model,
            device_name=self.device_name,
            ip_address=self.ip_address,
            totals=self.totals.copy_totals(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceModel": self.device_model,
            "ipHostname": self.device_name,
            "ipAddress": self.ip_address,
            "totals": self.totals.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PrinterUsage:
        device_name = payload.get("ipHostname")
        if device_name is None:
            device_name = payload.get("deviceName")
        return cls(
            device_model=str(payload.get("deviceModel") or ""),
            device_name=str(device_name or ""),
            ip_address=str(payload.get("ipAddress") or ""),
            totals=Totals.from_dict(payload.get("totals")),
        )


@dataclass
class UserData:
    totals: Totals = field(default_factory=Totals)
    printer_usage: list[PrinterUsage] = field(default_factory=list)

    def find_usage(self, key: tuple[str, str]) -> PrinterUsage | None:
        for usage in self.printer_usage:
            if usage.key == key:
                return usage
        return None

    def merge_usage(self, usage: PrinterUsage) -> None:
        """Add one device record, summing into an existing entry for the same device."""
        existing = self.find_usage(usage.key)
        if existing is None:
            self.printer_usage.append(usage.copy_usage())
        else:
            existing.totals.add(usage.totals)
        self.totals.add(usage.totals)

    def copy_user(self) -> UserData:
        return UserData(
            totals=self.totals.copy_totals(),
            printer_usage=[usage.copy_usage() for usage in self.printer_usage],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "printerUsage": [usage.to_dict() for usage in self.printer_usage],
        }

    @classmethod
    def from_dict(cls, payload: Any) -> UserData:
        if not isinstance(payload, dict):
            return cls()
        raw_usage = payload.get("printerUsage")
        usage = [PrinterUsage.from_dict(item) for item in raw_usage or [] if isinstance(item, dict)]
        return cls(totals=Totals.from_dict(payload.get("totals")), printer_usage=usage)


@dataclass
class DateRange:
    start: date
    end: date


@dataclass
class ReportPeriod:
    id: str
    file_name: str
    period_label: str
    users: dict[str, UserData] = field(default_factory=dict)
    grand_totals: Totals = field(default_factory=Totals)
    date_created: date | None = None
    range_start: date | None = None
    range_end: date | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "fileName": self.file_name}
        if self.date_created is not None:
            payload["dateCreated"] = self.date_created.isoformat()
        if self.range_start is not None:
            payload["rangeStart"] = self.range_start.isoformat()
        if self.range_end is not None:
            payload["rangeEnd"] = self.range_end.isoformat()
        payload["periodLabel"] = self.period_label
        payload["users"] = {user: data.to_dict() for user, data in self.users.items()}
        payload["grandTotals"] = self.grand_totals.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ReportPeriod:
        if not isinstance(payload, dict):
            raise ValueError("Report period must be a JSON object.")
        period_id = payload.get("id")
        if not isinstance(period_id, str) or not period_id:
            raise ValueError("Report period is missing an id.")
        file_name = str(payload.get("fileName") or "")
        raw_users = payload.get("users") or {}
        if not isinstance(raw_users, dict):
            raise ValueError(f"Report period {period_id} has an invalid users mapping.")
        return cls(
            id=period_id,
            file_name=file_name,
            period_label=str(payload.get("periodLabel") or file_name or "Unknown Period"),
            users={str(user): UserData.from_dict(data) for user, data in raw_users.items()},
            grand_totals=Totals.from_dict(payload.get("grandTotals")),
            date_created=parse_iso_date(payload.get("dateCreated")),
            range_start=parse_iso_date(payload.get("rangeStart")),
            range_end=parse_iso_date(payload.get("rangeEnd")),
        )


@dataclass
class SavedReport:
    id: str
    report_name: str
    user_name: str
    user_slug: str
    created_at: str
    periods: list[ReportPeriod] = field(default_factory=list)
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "reportName": self.report_name,
            "userName": self.user_name,
            "userSlug": self.user_slug,
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            payload["updatedAt"] = self.updated_at
        payload["periods"] = [period.to_dict() for period in self.periods]
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SavedReport:
        report_id = payload.get("id")
        if not isinstance(report_id, str) or not report_id:
            raise ValueError("Saved report is missing an id.")
        user_name = str(payload.get("userName") or DEFAULT_REPORT_OWNER)
        raw_periods = payload.get("periods") or []
        if not isinstance(raw_periods, list):
            raise ValueError(f"Saved report {report_id} has an invalid periods list.")
        updated_at = payload.get("updatedAt")
        return cls(
            id=report_id,
            report_name=str(payload.get("reportName") or ""),
            user_name=user_name,
            user_slug=str(payload.get("userSlug") or ""),
            created_at=str(payload.get("createdAt") or ""),
            periods=[ReportPeriod.from_dict(item) for item in raw_periods],
            updated_at=str(updated_at) if updated_at else None,
        )


@dataclass
class ReportSummary:
    id: str
    report_name: str
    user_name: str
    created_at: str
    file_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "reportName": self.report_name,
            "userName": self.user_name,
            "createdAt": self.created_at,
            "fileCount": self.file_count,
        }


def parse_iso_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(cleaned).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(cleaned[:10])
    except ValueError:
        return None


def _coerce_counter(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float) and math.isfinite(value):
        return max(int(value), 0)
    if isinstance(value, str):
        try:
            return max(int(value.strip()), 0)
        except ValueError:
            return 0
    return 0


def _attribute_for(key: str) -> str:
    if key in TOTALS_JSON_KEYS:
        return key
    for name, json_key in TOTALS_JSON_KEYS.items():
        if json_key == key:
            return name
    raise KeyError(key)
