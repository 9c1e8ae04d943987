from pathlib import Path

from printusage.config import DEFAULT_BLOB_PREFIX, DEFAULT_REPORTS_DIRECTORY, load_settings

ENV_NAMES = (
    "REPORTS_DIRECTORY",
    "BLOB_READ_WRITE_TOKEN",
    "BLOB_STORE_NAME",
    "BLOB_PREFIX",
    "BLOB_API_URL",
    "VERCEL",
    "LOG_LEVEL",
)


def _clear_env(monkeypatch) -> None:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_load_settings_defaults(monkeypatch) -> None:
    _clear_env(monkeypatch)

    settings = load_settings()

    assert settings.reports_directory == DEFAULT_REPORTS_DIRECTORY
    assert settings.blob_prefix == DEFAULT_BLOB_PREFIX
    assert settings.log_level == "INFO"
    assert not settings.use_blob_storage
    assert settings.blob_base_url == "https://irhprinterreport-blob.public.blob.vercel-storage.com"


def test_load_settings_from_environment(monkeypatch, tmp_path: Path) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("REPORTS_DIRECTORY", str(tmp_path / "saved"))
    monkeypatch.setenv("BLOB_STORE_NAME", "custom-store")
    monkeypatch.setenv("BLOB_API_URL", "https://blob.example.com/")
    monkeypatch.setenv("VERCEL", "1")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.reports_directory == (tmp_path / "saved").resolve()
    assert settings.blob_api_url == "https://blob.example.com"
    assert settings.blob_base_url == "https://custom-store.public.blob.vercel-storage.com"
    assert settings.use_blob_storage
    assert settings.log_level == "DEBUG"


def test_blob_token_enables_blob_storage(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("BLOB_READ_WRITE_TOKEN", "  token  ")

    settings = load_settings()

    assert settings.blob_token == "token"
    assert settings.use_blob_storage
