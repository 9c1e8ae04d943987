from __future__ import annotations

import json
import logging
import random
import re
import string
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .blob_client import BlobClient, BlobRequestError
from .config import Settings, load_settings
from .models import ReportPeriod, ReportSummary, SavedReport

logger = logging.getLogger(__name__)

UNKNOWN_OWNER = "Unknown"


class ReportStoreError(RuntimeError):
    pass


class ReportNotFoundError(LookupError):
    def __init__(self, report_id: str) -> None:
        super().__init__(f"Report not found: {report_id}")
        self.report_id = report_id


class ReportNameConflictError(ValueError):
    def __init__(self, user_name: str, report_name: str) -> None:
        super().__init__("A report with this name already exists. Please choose another name.")
        self.user_name = user_name
        self.report_name = report_name


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def slugify_user_name(user_name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", user_name.strip().lower())
    return slug.strip("-") or "user"


def build_report_id(user_slug: str) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{user_slug}__{int(time.time() * 1000)}-{suffix}"


def slug_from_report_id(report_id: str) -> str | None:
    if "__" not in report_id:
        return None
    return report_id.split("__", 1)[0]


def _normalize_name(value: str) -> str:
    return value.strip().lower()


def names_conflict(
    payload: dict[str, Any],
    user_name: str,
    report_name: str,
    exclude_id: str | None = None,
) -> bool:
    if exclude_id and payload.get("id") == exclude_id:
        return False
    existing_user = payload.get("userName")
    existing_name = payload.get("reportName")
    if not isinstance(existing_user, str) or not isinstance(existing_name, str):
        return False
    return (
        _normalize_name(existing_user) == _normalize_name(user_name)
        and _normalize_name(existing_name) == _normalize_name(report_name)
    )


def _created_sort_key(summary: ReportSummary) -> float:
    raw = summary.created_at.replace("Z", "+00:00")
    try:
        stamp = datetime.fromisoformat(raw)
    except ValueError:
        return float("-inf")
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.timestamp()


def _summary_from_payload(payload: dict[str, Any]) -> ReportSummary:
    periods = payload.get("periods")
    return ReportSummary(
        id=str(payload.get("id") or ""),
        report_name=str(payload.get("reportName") or ""),
        user_name=str(payload.get("userName") or ""),
        created_at=str(payload.get("createdAt") or ""),
        file_count=len(periods) if isinstance(periods, list) else 0,
    )


def _load_saved_report(payload: dict[str, Any], report_id: str) -> SavedReport:
    try:
        return SavedReport.from_dict(payload)
    except ValueError as exc:
        raise ReportStoreError(f"Stored report {report_id} is malformed: {exc}") from exc


class ReportStore:
    """Saved-report operations shared by the local and blob backends."""

    def _iter_payloads(self) -> Iterator[dict[str, Any]]:
        raise NotImplementedError

    def _read(self, report_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def _write_new(self, report: SavedReport) -> None:
        raise NotImplementedError

    def _write_existing(self, report_id: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def _remove(self, report_id: str) -> None:
        raise NotImplementedError

    def list_summaries(self) -> dict[str, list[ReportSummary]]:
        grouped: dict[str, list[ReportSummary]] = {}
        for payload in self._iter_payloads():
            summary = _summary_from_payload(payload)
            grouped.setdefault(summary.user_name or UNKNOWN_OWNER, []).append(summary)
        for summaries in grouped.values():
            summaries.sort(key=_created_sort_key, reverse=True)
        return grouped

    def report_name_exists(self, user_name: str, report_name: str, exclude_id: str | None = None) -> bool:
        return any(
            names_conflict(payload, user_name, report_name, exclude_id) for payload in self._iter_payloads()
        )

    def create(self, report_name: str, user_name: str, periods: list[ReportPeriod]) -> SavedReport:
        if self.report_name_exists(user_name, report_name):
            raise ReportNameConflictError(user_name, report_name)
        slug = slugify_user_name(user_name)
        report = SavedReport(
            id=build_report_id(slug),
            report_name=report_name,
            user_name=user_name,
            user_slug=slug,
            created_at=_utc_now(),
            periods=periods,
        )
        self._write_new(report)
        logger.info("Saved report %s (%s / %s)", report.id, user_name, report_name)
        return report

    def load(self, report_id: str) -> SavedReport:
        payload = self._read(report_id)
        if payload is None:
            raise ReportNotFoundError(report_id)
        return _load_saved_report(payload, report_id)

    def overwrite(
        self,
        report_id: str,
        *,
        report_name: str,
        user_name: str,
        periods: list[ReportPeriod] | None = None,
    ) -> SavedReport:
        existing = self._read(report_id)
        if existing is None:
            raise ReportNotFoundError(report_id)
        updated = dict(existing)
        updated["reportName"] = report_name
        updated["userName"] = user_name
        if periods is not None:
            updated["periods"] = [period.to_dict() for period in periods]
        updated["updatedAt"] = _utc_now()
        report = _load_saved_report(updated, report_id)
        self._write_existing(report_id, report.to_dict())
        logger.info("Updated report %s", report_id)
        return report

    def rename(self, report_id: str, *, report_name: str, user_name: str) -> SavedReport:
        if self._read(report_id) is None:
            raise ReportNotFoundError(report_id)
        if self.report_name_exists(user_name, report_name, exclude_id=report_id):
            raise ReportNameConflictError(user_name, report_name)
        return self.overwrite(report_id, report_name=report_name, user_name=user_name)

    def delete(self, report_id: str) -> None:
        if self._read(report_id) is None:
            raise ReportNotFoundError(report_id)
        self._remove(report_id)
        logger.info("Deleted report %s", report_id)


class LocalReportStore(ReportStore):
    """Reports as JSON files under ``<root>/<user slug>/<id>.json``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ReportStoreError(f"Could not create report directory {self.root}: {exc}") from exc

    def _report_files(self) -> list[Path]:
        self._ensure_root()
        files = sorted(self.root.glob("*.json"))
        for entry in sorted(self.root.iterdir()):
            if entry.is_dir():
                files.extend(sorted(entry.glob("*.json")))
        return files

    def _read_file(self, path: Path) -> dict[str, Any]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ReportStoreError(f"Could not read {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ReportStoreError(f"{path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ReportStoreError(f"{path} does not contain a report object.")
        return payload

    def _write_file(self, path: Path, payload: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            raise ReportStoreError(f"Could not write {path}: {exc}") from exc

    def resolve_path(self, report_id: str) -> Path | None:
        if not self.root.exists():
            return None
        file_name = f"{report_id}.json"
        slug = slug_from_report_id(report_id)
        if slug:
            direct = self.root / slug / file_name
            if direct.is_file():
                return direct
        legacy = self.root / file_name
        if legacy.is_file():
            return legacy
        for entry in sorted(self.root.iterdir()):
            candidate = entry / file_name
            if entry.is_dir() and candidate.is_file():
                return candidate
        return None

    def _iter_payloads(self) -> Iterator[dict[str, Any]]:
        for path in self._report_files():
            try:
                yield self._read_file(path)
            except ReportStoreError as exc:
                logger.warning("Skipping unreadable report file: %s", exc)

    def _read(self, report_id: str) -> dict[str, Any] | None:
        path = self.resolve_path(report_id)
        if path is None:
            return None
        return self._read_file(path)

    def _write_new(self, report: SavedReport) -> None:
        self._ensure_root()
        self._write_file(self.root / report.user_slug / f"{report.id}.json", report.to_dict())

    def _write_existing(self, report_id: str, payload: dict[str, Any]) -> None:
        path = self.resolve_path(report_id)
        if path is None:
            raise ReportNotFoundError(report_id)
        self._write_file(path, payload)

    def _remove(self, report_id: str) -> None:
        path = self.resolve_path(report_id)
        if path is None:
            raise ReportNotFoundError(report_id)
        try:
            path.unlink()
        except OSError as exc:
            raise ReportStoreError(f"Could not delete {path}: {exc}") from exc


class BlobReportStore(ReportStore):
    """Reports as JSON blobs keyed ``<prefix>/<user slug>/<id>.json``."""

    def __init__(self, client: BlobClient, prefix: str) -> None:
        self.client = client
        self.prefix = prefix.strip("/")

    def key_for(self, user_slug: str, report_id: str) -> str:
        return f"{self.prefix}/{user_slug}/{report_id}.json"

    def _call(self, action: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except BlobRequestError as exc:
            raise ReportStoreError(f"Could not {action}: {exc}") from exc

    def _list(self) -> list[dict[str, Any]]:
        return self._call("list saved reports", self.client.list_blobs, f"{self.prefix}/")

    def _locate(self, report_id: str) -> tuple[str, dict[str, Any]] | None:
        slug = slug_from_report_id(report_id) or ""
        direct_url = self.client.url_for(self.key_for(slug, report_id))
        payload = self._call("load report", self.client.get_json, direct_url)
        if payload is not None:
            return direct_url, payload

        suffix = f"/{report_id}.json"
        for blob in self._list():
            url = str(blob.get("url") or "")
            if not url.endswith(suffix):
                continue
            payload = self._call("load report", self.client.get_json, url)
            if payload is not None:
                return url, payload
        return None

    def _iter_payloads(self) -> Iterator[dict[str, Any]]:
        for blob in self._list():
            url = blob.get("url")
            if not isinstance(url, str) or not url:
                continue
            payload = self._call("load report", self.client.get_json, url)
            if payload is None:
                continue
            yield payload

    def _read(self, report_id: str) -> dict[str, Any] | None:
        located = self._locate(report_id)
        return located[1] if located else None

    def _write_new(self, report: SavedReport) -> None:
        self._call("save report", self.client.put_json, self.key_for(report.user_slug, report.id), report.to_dict())

    def _write_existing(self, report_id: str, payload: dict[str, Any]) -> None:
        slug = str(payload.get("userSlug") or slug_from_report_id(report_id) or "")
        self._call("save report", self.client.put_json, self.key_for(slug, report_id), payload)

    def _remove(self, report_id: str) -> None:
        located = self._locate(report_id)
        if located is None:
            raise ReportNotFoundError(report_id)
        self._call("delete report", self.client.delete, located[0])


def get_report_store(settings: Settings | None = None) -> ReportStore:
    settings = settings or load_settings()
    if settings.use_blob_storage:
        client = BlobClient(settings.blob_token, settings.blob_api_url, settings.blob_base_url)
        return BlobReportStore(client, settings.blob_prefix)
    return LocalReportStore(settings.reports_directory)
