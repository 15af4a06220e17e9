"""
HTTP transport for the news data APIs.

- JSON requests return the decoded body (a Mapping) or raise `TransportError`.
- File downloads are streamed to disk in chunks.
- The `user-key` header is the only authentication the APIs need.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

import requests

from bulknews.common.config import DEFAULT_HTTP_TIMEOUT_S
from bulknews.common.errors import TransportError
from bulknews.common.logging import log_event

logger = logging.getLogger(__name__)

_USER_AGENT = "bulknews-python"
_DOWNLOAD_CHUNK_BYTES = 1024 * 1024


def auth_headers(api_key: str, *, json_body: bool = False) -> dict[str, str]:
    headers = {"user-key": api_key, "User-Agent": _USER_AGENT}
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


class ApiClient:
    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
    ) -> None:
        self._session = session or requests.Session()
        self.timeout_s = float(timeout_s)

    def close(self) -> None:
        self._session.close()

    def send_request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        payload: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Mapping[str, Any]:
        try:
            resp = self._session.request(
                method.upper(),
                url,
                headers=dict(headers),
                json=dict(payload) if payload is not None else None,
                params=dict(params or {}),
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method.upper()} {url} failed: {e}") from e

        if resp.status_code >= 400:
            # Keep message compact but informative for callers/loggers.
            body = (resp.text or "")[:500]
            raise TransportError(
                f"Unexpected API error: {method.upper()} {url} status={resp.status_code} body={body}",
                status_code=resp.status_code,
                body=body,
            )

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"{method.upper()} {url} returned a non-JSON body", status_code=resp.status_code) from e
        return data if isinstance(data, Mapping) else {"data": data}

    def download(self, url: str, destination: Path, *, headers: Mapping[str, str]) -> Path:
        """
        Stream `url` into `destination`, overwriting any existing file.
        """
        destination = Path(destination)
        try:
            with self._session.get(url, headers=dict(headers), stream=True, timeout=self.timeout_s) as resp:
                if resp.status_code >= 400:
                    raise TransportError(
                        f"Download failed: {url} status={resp.status_code}",
                        status_code=resp.status_code,
                        body=(resp.text or "")[:500],
                    )
                with destination.open("wb") as f:
                    for chunk in resp.iter_content(chunk_size=_DOWNLOAD_CHUNK_BYTES):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            raise TransportError(f"Download failed: {url}: {e}") from e

        log_event(logger, "http.download", severity="DEBUG", url=url, path=str(destination))
        return destination
