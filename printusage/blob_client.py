from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

BLOB_API_VERSION = "7"
LIST_PAGE_SIZE = 1000


class BlobRequestError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class BlobClient:
    """Minimal client for the blob storage HTTP API used by saved reports."""

    def __init__(self, token: str | None, api_url: str, base_url: str) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.base_url = base_url.rstrip("/")

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"x-api-version": BLOB_API_VERSION}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> bytes:
        request = urllib.request.Request(url=url, method=method, headers=headers or {}, data=body)
        try:
            with urllib.request.urlopen(request, timeout=30) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            details = exc.read().decode("utf-8", errors="replace")
            raise BlobRequestError(f"Blob request failed ({exc.code}): {details}", status=exc.code) from exc
        except urllib.error.URLError as exc:
            raise BlobRequestError(f"Blob request error: {exc.reason}") from exc

    def _json_request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> dict[str, Any]:
        payload = self._request(method, url, headers=headers, body=body)
        try:
            parsed = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BlobRequestError("Blob response was not valid JSON.") from exc
        if not isinstance(parsed, dict):
            raise BlobRequestError("Blob response was not a JSON object.")
        return parsed

    def url_for(self, pathname: str) -> str:
        return f"{self.base_url}/{pathname}"

    def list_blobs(self, prefix: str) -> list[dict[str, Any]]:
        blobs: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            query = {"prefix": prefix, "limit": str(LIST_PAGE_SIZE)}
            if cursor:
                query["cursor"] = cursor
            payload = self._json_request(
                "GET",
                f"{self.api_url}?{urllib.parse.urlencode(query)}",
                headers=self._headers(),
            )
            values = payload.get("blobs")
            if isinstance(values, list):
                blobs.extend(item for item in values if isinstance(item, dict))
            next_cursor = payload.get("cursor")
            if not payload.get("hasMore", bool(next_cursor)) or not isinstance(next_cursor, str) or not next_cursor:
                break
            cursor = next_cursor
        return blobs

    def get_json(self, url: str) -> dict[str, Any] | None:
        try:
            return self._json_request("GET", url, headers=self._headers({"Cache-Control": "no-store"}))
        except BlobRequestError as exc:
            if exc.status == 404:
                return None
            raise

    def put_json(self, pathname: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps(payload, indent=2).encode("utf-8")
        return self._json_request(
            "PUT",
            f"{self.api_url}/{urllib.parse.quote(pathname)}",
            headers=self._headers(
                {
                    "x-content-type": "application/json",
                    "x-add-random-suffix": "0",
                    "x-allow-overwrite": "1",
                }
            ),
            body=body,
        )

    def delete(self, url: str) -> None:
        body = json.dumps({"urls": [url]}).encode("utf-8")
        self._request(
            "POST",
            f"{self.api_url}/delete",
            headers=self._headers({"Content-Type": "application/json"}),
            body=body,
        )
