from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_REPORTS_DIRECTORY = Path.cwd() / "storage" / "reports"
DEFAULT_BLOB_STORE_NAME = "irhprinterreport-blob"
DEFAULT_BLOB_PREFIX = "reports"
DEFAULT_BLOB_API_URL = "https://blob.vercel-storage.com"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    reports_directory: Path = DEFAULT_REPORTS_DIRECTORY
    blob_token: str | None = None
    blob_store_name: str = DEFAULT_BLOB_STORE_NAME
    blob_prefix: str = DEFAULT_BLOB_PREFIX
    blob_api_url: str = DEFAULT_BLOB_API_URL
    on_vercel: bool = False
    log_level: str = "INFO"

    @property
    def use_blob_storage(self) -> bool:
        return bool(self.blob_token) or self.on_vercel

    @property
    def blob_base_url(self) -> str:
        return f"https://{self.blob_store_name}.public.blob.vercel-storage.com"


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip()


def load_settings() -> Settings:
    reports_directory = _env("REPORTS_DIRECTORY")
    return Settings(
        reports_directory=Path(reports_directory).resolve() if reports_directory else DEFAULT_REPORTS_DIRECTORY,
        blob_token=_env("BLOB_READ_WRITE_TOKEN") or None,
        blob_store_name=_env("BLOB_STORE_NAME") or DEFAULT_BLOB_STORE_NAME,
        blob_prefix=_env("BLOB_PREFIX") or DEFAULT_BLOB_PREFIX,
        blob_api_url=(_env("BLOB_API_URL") or DEFAULT_BLOB_API_URL).rstrip("/"),
        on_vercel=_env("VERCEL") == "1",
        log_level=(_env("LOG_LEVEL") or "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
