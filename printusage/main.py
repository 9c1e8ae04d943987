from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .aggregation import (
    AggregatedReport,
    aggregate,
    filter_periods,
    filter_users,
    find_zero_columns,
    sum_user_totals,
)
from .config import configure_logging, load_settings
from .exports import (
    COLUMN_KEYS,
    ColumnConfig,
    export_file_name,
    format_printer_name,
    rows_for_export,
    users_to_csv,
    users_to_pdf,
    visible_columns,
)
from .identities import delete_users, display_name, rename_user
from .models import DEFAULT_REPORT_OWNER, ReportPeriod, UserData
from .parsing import ReportParseError, parse_report_upload
from .storage import (
    ReportNameConflictError,
    ReportNotFoundError,
    ReportStore,
    ReportStoreError,
    get_report_store,
)

logger = logging.getLogger(__name__)

settings = load_settings()
configure_logging(settings.log_level)

app = FastAPI(title="Printer Usage Reports", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _store() -> ReportStore:
    return get_report_store(settings)


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/periods/parse")
async def parse_periods(report_files: list[UploadFile] | None = File(default=None)) -> dict:
    uploads = report_files or []
    if not uploads:
        raise HTTPException(status_code=400, detail="At least one HTML report file is required.")

    periods: list[dict[str, Any]] = []
    file_summaries: list[dict[str, Any]] = []
    warnings: list[str] = []

    for upload in uploads:
        if not upload.filename:
            continue

        raw = await upload.read()
        try:
            parsed = parse_report_upload(upload.filename, raw)
        except ReportParseError as exc:
            logger.warning("Rejected upload: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        periods.append(parsed.period.to_dict())
        file_summaries.append(
            {
                "filename": parsed.filename,
                "period_id": parsed.period.id,
                "period_label": parsed.period.period_label,
                "users": len(parsed.period.users),
                "rows_ingested": parsed.rows_ingested,
                "rows_skipped": parsed.rows_skipped,
            }
        )
        warnings.extend(parsed.warnings)

    return {"periods": periods, "files": file_summaries, "warnings": warnings}


@app.post("/api/periods/aggregate")
def aggregate_periods(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    report, rows, display_names = _aggregate_view(payload)

    zero_columns = find_zero_columns(report.per_user_totals, COLUMN_KEYS)
    hidden = _parse_hidden_columns(payload)
    columns = visible_columns(hidden, zero_columns)

    return {
        "period_order": [period.id for period in report.ordered_periods],
        "overall_range": _serialize_range(report),
        "all_users": report.all_users,
        "all_printers": report.all_printers,
        "users": [_serialize_user_row(user, data, display_names) for user, data in rows],
        "totals": sum_user_totals(rows).to_dict(),
        "zero_columns": [key for key in COLUMN_KEYS if key in zero_columns],
        "columns": [
            {"key": column.key, "label": column.label, "short_label": column.short_label} for column in columns
        ],
    }


@app.post("/api/periods/users/rename")
def rename_period_user(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    periods = _parse_periods(payload)
    display_names = _parse_display_names(payload)
    old_user = _require_string(payload, field_name="old_user")
    new_user = payload.get("new_user")
    if not isinstance(new_user, str):
        raise HTTPException(status_code=400, detail="new_user must be a string.")

    renamed = rename_user(periods, old_user, new_user, display_names)
    return {
        "user": renamed,
        "periods": [period.to_dict() for period in periods],
        "display_names": display_names,
    }


@app.post("/api/periods/users/delete")
def delete_period_users(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    periods = _parse_periods(payload)
    users = _parse_string_list(payload, field_name="users")
    if not users:
        raise HTTPException(status_code=400, detail="users must list at least one user.")

    removed = delete_users(periods, users)
    return {
        "requested": len(users),
        "removed": removed,
        "periods": [period.to_dict() for period in periods],
    }


@app.post("/api/periods/export/csv")
def export_csv(payload: dict[str, Any] = Body(...)) -> Response:
    rows, columns, display_names, _report = _export_inputs(payload)
    content = users_to_csv(rows, columns, display_names)
    return _download(content.encode("utf-8"), "text/csv; charset=utf-8", export_file_name("csv"))


@app.post("/api/periods/export/pdf")
def export_pdf(payload: dict[str, Any] = Body(...)) -> Response:
    rows, columns, display_names, report = _export_inputs(payload)
    content = users_to_pdf(rows, columns, display_names, report.overall_range)
    return _download(content, "application/pdf", export_file_name("pdf"))


@app.get("/api/reports")
def list_reports() -> dict[str, Any]:
    try:
        grouped = _store().list_summaries()
    except ReportStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {
        "reports": {owner: [summary.to_dict() for summary in summaries] for owner, summaries in grouped.items()},
    }


@app.post("/api/reports")
def create_report(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    report_name, user_name = _parse_report_names(payload, default_owner=True)
    periods = _parse_periods(payload)
    try:
        report = _store().create(report_name, user_name, periods)
    except ReportNameConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ReportStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"id": report.id, "report": report.to_dict()}


@app.get("/api/reports/{report_id}")
def get_report(report_id: str) -> dict[str, Any]:
    try:
        report = _store().load(report_id)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found") from exc
    except ReportStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"report": report.to_dict()}


@app.put("/api/reports/{report_id}")
def overwrite_report(report_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    report_name, user_name = _parse_report_names(payload)
    periods = _parse_periods(payload)
    try:
        report = _store().overwrite(report_id, report_name=report_name, user_name=user_name, periods=periods)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found") from exc
    except ReportStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"id": report.id, "report": report.to_dict()}


@app.patch("/api/reports/{report_id}")
def rename_report(report_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    report_name, user_name = _parse_report_names(payload)
    try:
        report = _store().rename(report_id, report_name=report_name, user_name=user_name)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found") from exc
    except ReportNameConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ReportStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"report": report.to_dict()}


@app.delete("/api/reports/{report_id}")
def delete_report(report_id: str) -> dict[str, Any]:
    try:
        _store().delete(report_id)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found") from exc
    except ReportStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"deleted": report_id}


def _parse_periods(payload: dict[str, Any]) -> list[ReportPeriod]:
    raw_list = payload.get("periods")
    if not isinstance(raw_list, list):
        raise HTTPException(status_code=400, detail="periods must be a JSON array.")

    parsed: list[ReportPeriod] = []
    for index, item in enumerate(raw_list, start=1):
        if not isinstance(item, dict):
            raise HTTPException(status_code=400, detail=f"periods item {index} must be an object.")
        try:
            parsed.append(ReportPeriod.from_dict(item))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"periods item {index} is invalid: {exc}") from exc
    return parsed


def _parse_string_list(payload: dict[str, Any], *, field_name: str) -> list[str]:
    raw_list = payload.get(field_name)
    if raw_list is None:
        return []
    if not isinstance(raw_list, list):
        raise HTTPException(status_code=400, detail=f"{field_name} must be a JSON array.")

    parsed: list[str] = []
    for index, value in enumerate(raw_list, start=1):
        if not isinstance(value, str):
            raise HTTPException(status_code=400, detail=f"{field_name} item {index} must be a string.")
        parsed.append(value)
    return parsed


def _parse_hidden_columns(payload: dict[str, Any]) -> list[str]:
    hidden = _parse_string_list(payload, field_name="hidden_columns")
    unknown = [key for key in hidden if key not in COLUMN_KEYS]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown column(s): {', '.join(unknown)}. Use {', '.join(COLUMN_KEYS)}.",
        )
    return hidden


def _parse_display_names(payload: dict[str, Any]) -> dict[str, str]:
    raw = payload.get("display_names")
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="display_names must be a JSON object.")
    return {str(user): str(name) for user, name in raw.items() if isinstance(name, str)}


def _require_string(payload: dict[str, Any], *, field_name: str) -> str:
    value = payload.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail=f"{field_name} is required.")
    return value


def _parse_report_names(payload: dict[str, Any], *, default_owner: bool = False) -> tuple[str, str]:
    report_name = payload.get("reportName")
    user_name = payload.get("userName")
    if default_owner and not user_name:
        user_name = DEFAULT_REPORT_OWNER
    if not isinstance(report_name, str) or not report_name.strip():
        raise HTTPException(status_code=400, detail="Missing required fields")
    if not isinstance(user_name, str) or not user_name.strip():
        raise HTTPException(status_code=400, detail="Missing required fields")
    return report_name.strip(), user_name.strip()


def _serialize_range(report: AggregatedReport) -> dict[str, str] | None:
    if report.overall_range is None:
        return None
    return {
        "start": report.overall_range.start.isoformat(),
        "end": report.overall_range.end.isoformat(),
    }


def _serialize_user_row(user: str, data: UserData, display_names: dict[str, str]) -> dict[str, Any]:
    return {
        "user": user,
        "display_name": display_name(display_names, user),
        "printers": [format_printer_name(usage.device_name) for usage in data.printer_usage],
        "totals": data.totals.to_dict(),
    }


def _export_inputs(
    payload: dict[str, Any],
) -> tuple[list[tuple[str, UserData]], list[ColumnConfig], dict[str, str], AggregatedReport]:
    report, rows, display_names = _aggregate_view(payload)
    rows = rows_for_export(rows, _parse_string_list(payload, field_name="selected_users"))
    if not rows:
        raise HTTPException(status_code=400, detail="No users to export.")

    hidden = _parse_hidden_columns(payload)
    columns = visible_columns(hidden, find_zero_columns(report.per_user_totals, COLUMN_KEYS))
    return rows, columns, display_names, report


def _download(content: bytes, media_type: str, file_name: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


def _aggregate_view(
    payload: dict[str, Any],
) -> tuple[AggregatedReport, list[tuple[str, UserData]], dict[str, str]]:
    periods = _parse_periods(payload)
    display_names = _parse_display_names(payload)
    selected = filter_periods(periods, _parse_string_list(payload, field_name="selected_period_ids"))
    report = aggregate(selected, _parse_string_list(payload, field_name="selected_printers"))

    search = payload.get("search") or ""
    if not isinstance(search, str):
        raise HTTPException(status_code=400, detail="search must be a string.")
    rows = filter_users(report.all_users, report.per_user_totals, display_names, search)
    return report, rows, display_names
