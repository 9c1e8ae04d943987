import json
import logging
import re
from datetime import date
from pathlib import Path

import pytest

from printusage.blob_client import BlobRequestError
from printusage.config import Settings
from printusage.models import PrinterUsage, ReportPeriod, Totals, UserData
from printusage.storage import (
    BlobReportStore,
    LocalReportStore,
    ReportNameConflictError,
    ReportNotFoundError,
    ReportStoreError,
    build_report_id,
    get_report_store,
    slugify_user_name,
)


def _period(period_id: str = "jan.html::2024-01-01::2024-01-31") -> ReportPeriod:
    user = UserData()
    user.merge_usage(
        PrinterUsage(device_model="HP", device_name="10A", ip_address="10.0.0.1", totals=Totals(mono=3, total=3))
    )
    return ReportPeriod(
        id=period_id,
        file_name="jan.html",
        period_label="Jan 1 → Jan 31, 2024",
        users={"jdoe": user},
        grand_totals=user.totals.copy_totals(),
        range_start=date(2024, 1, 1),
        range_end=date(2024, 1, 31),
    )


def _write_report(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


class FakeBlobClient:
    def __init__(self) -> None:
        self.base_url = "https://example-store.public.blob.vercel-storage.com"
        self.blobs: dict[str, str] = {}
        self.fail = False

    def url_for(self, pathname: str) -> str:
        return f"{self.base_url}/{pathname}"

    def _check(self) -> None:
        if self.fail:
            raise BlobRequestError("Blob request failed (503): unavailable", status=503)

    def list_blobs(self, prefix: str) -> list[dict]:
        self._check()
        return [
            {"pathname": pathname, "url": self.url_for(pathname)}
            for pathname in sorted(self.blobs)
            if pathname.startswith(prefix)
        ]

    def get_json(self, url: str) -> dict | None:
        self._check()
        pathname = url.removeprefix(f"{self.base_url}/")
        raw = self.blobs.get(pathname)
        return json.loads(raw) if raw is not None else None

    def put_json(self, pathname: str, payload: dict) -> dict:
        self._check()
        self.blobs[pathname] = json.dumps(payload)
        return {"pathname": pathname, "url": self.url_for(pathname)}

    def delete(self, url: str) -> None:
        self._check()
        self.blobs.pop(url.removeprefix(f"{self.base_url}/"), None)


def test_slugify_user_name() -> None:
    assert slugify_user_name("  Jane O'Neil ") == "jane-o-neil"
    assert slugify_user_name("Finance Team #2") == "finance-team-2"
    assert slugify_user_name("***") == "user"


def test_build_report_id_format() -> None:
    report_id = build_report_id("jane-doe")

    assert re.fullmatch(r"jane-doe__\d+-[a-z0-9]{6}", report_id)


def test_local_create_and_load_round_trip(tmp_path: Path) -> None:
    store = LocalReportStore(tmp_path / "reports")

    created = store.create("Q1 Usage", "Jane Doe", [_period()])
    loaded = store.load(created.id)

    assert created.user_slug == "jane-doe"
    assert (tmp_path / "reports" / "jane-doe" / f"{created.id}.json").is_file()
    assert loaded == created
    assert loaded.updated_at is None


def test_local_create_rejects_duplicate_names(tmp_path: Path) -> None:
    store = LocalReportStore(tmp_path)
    store.create("Q1 Usage", "Jane Doe", [])

    with pytest.raises(ReportNameConflictError):
        store.create("  q1 usage ", "JANE DOE", [])

    store.create("Q1 Usage", "Someone Else", [])


def test_local_list_summaries_groups_and_sorts(tmp_path: Path, caplog) -> None:
    _write_report(
        tmp_path / "jane-doe" / "jane-doe__1-aaaaaa.json",
        {"id": "jane-doe__1-aaaaaa", "reportName": "Old", "userName": "Jane Doe", "createdAt": "2024-01-01T00:00:00Z", "periods": [{}]},
    )
    _write_report(
        tmp_path / "jane-doe" / "jane-doe__2-bbbbbb.json",
        {"id": "jane-doe__2-bbbbbb", "reportName": "New", "userName": "Jane Doe", "createdAt": "2024-03-01T00:00:00+00:00", "periods": []},
    )
    _write_report(tmp_path / "legacy.json", {"id": "legacy", "reportName": "Legacy", "createdAt": "2023-06-01"})
    (tmp_path / "jane-doe" / "broken.json").write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        grouped = LocalReportStore(tmp_path).list_summaries()

    assert [summary.report_name for summary in grouped["Jane Doe"]] == ["New", "Old"]
    assert grouped["Jane Doe"][1].file_count == 1
    assert [summary.id for summary in grouped["Unknown"]] == ["legacy"]
    assert "Skipping unreadable report file" in caplog.text


def test_local_lookup_falls_back_to_root_and_other_partitions(tmp_path: Path) -> None:
    _write_report(tmp_path / "legacy-id.json", {"id": "legacy-id", "reportName": "Legacy", "userName": "General"})
    _write_report(
        tmp_path / "moved" / "jane__5-cccccc.json",
        {"id": "jane__5-cccccc", "reportName": "Moved", "userName": "Jane"},
    )
    store = LocalReportStore(tmp_path)

    assert store.load("legacy-id").report_name == "Legacy"
    assert store.load("jane__5-cccccc").report_name == "Moved"
    with pytest.raises(ReportNotFoundError):
        store.load("jane__6-dddddd")


def test_local_overwrite_keeps_identity_and_sets_updated_at(tmp_path: Path) -> None:
    store = LocalReportStore(tmp_path)
    created = store.create("Q1", "Jane Doe", [])

    updated = store.overwrite(created.id, report_name="Q1 final", user_name="Jane Doe", periods=[_period()])

    assert updated.id == created.id
    assert updated.created_at == created.created_at
    assert updated.updated_at is not None
    assert store.load(created.id).periods == [_period()]
    with pytest.raises(ReportNotFoundError):
        store.overwrite("nobody__1-zzzzzz", report_name="x", user_name="y")


def test_local_rename_checks_other_reports_only(tmp_path: Path) -> None:
    store = LocalReportStore(tmp_path)
    first = store.create("Q1", "Jane Doe", [_period()])
    store.create("Q2", "Jane Doe", [])

    with pytest.raises(ReportNameConflictError):
        store.rename(first.id, report_name="q2", user_name="Jane Doe")

    renamed = store.rename(first.id, report_name="Q1 ", user_name="Jane Doe")
    assert renamed.report_name == "Q1 "
    assert renamed.periods == [_period()]


def test_local_delete(tmp_path: Path) -> None:
    store = LocalReportStore(tmp_path)
    created = store.create("Q1", "Jane Doe", [])

    store.delete(created.id)

    assert store.list_summaries() == {}
    with pytest.raises(ReportNotFoundError):
        store.delete(created.id)


def test_local_malformed_report_is_store_error(tmp_path: Path) -> None:
    _write_report(tmp_path / "bad" / "bad__1-aaaaaa.json", {"id": "bad__1-aaaaaa", "periods": "nope"})

    with pytest.raises(ReportStoreError):
        LocalReportStore(tmp_path).load("bad__1-aaaaaa")


def test_blob_store_lifecycle() -> None:
    client = FakeBlobClient()
    store = BlobReportStore(client, "reports")

    created = store.create("Q1", "Jane Doe", [_period()])

    assert f"reports/jane-doe/{created.id}.json" in client.blobs
    assert store.load(created.id) == created
    assert store.report_name_exists("jane doe", "q1")

    store.rename(created.id, report_name="Q1 renamed", user_name="Jane Doe")
    assert [s.report_name for s in store.list_summaries()["Jane Doe"]] == ["Q1 renamed"]

    store.delete(created.id)
    assert client.blobs == {}


def test_blob_store_falls_back_to_listing_scan() -> None:
    client = FakeBlobClient()
    client.put_json("reports/elsewhere/jane__7-eeeeee.json", {"id": "jane__7-eeeeee", "reportName": "Found", "userName": "Jane"})
    store = BlobReportStore(client, "reports/")

    assert store.load("jane__7-eeeeee").report_name == "Found"
    with pytest.raises(ReportNotFoundError):
        store.load("jane__8-ffffff")


def test_blob_store_wraps_transport_failures() -> None:
    client = FakeBlobClient()
    client.fail = True
    store = BlobReportStore(client, "reports")

    with pytest.raises(ReportStoreError):
        store.list_summaries()
    with pytest.raises(ReportStoreError):
        store.load("jane__1-aaaaaa")


def test_get_report_store_selects_backend(tmp_path: Path) -> None:
    assert isinstance(get_report_store(Settings(reports_directory=tmp_path)), LocalReportStore)
    assert isinstance(get_report_store(Settings(reports_directory=tmp_path, blob_token="token")), BlobReportStore)
    assert isinstance(get_report_store(Settings(reports_directory=tmp_path, on_vercel=True)), BlobReportStore)
