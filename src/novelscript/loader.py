"""Fetch script text and resolve asset paths against the script location."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin, urlparse
from urllib.request import url2pathname

import httpx

from .errors import ScriptLoadError

logger = logging.getLogger(__name__)

_EXTERNAL_PATH = re.compile(r"^(blob:|data:|https?:|[a-z][a-z0-9+.-]*:)", re.IGNORECASE)
_WINDOWS_DRIVE = re.compile(r"^[a-z]:[\\/]", re.IGNORECASE)


def is_external_path(path: str) -> bool:
    """Return ``True`` for paths that already carry a URL scheme."""

    return bool(_EXTERNAL_PATH.match(path)) and not _WINDOWS_DRIVE.match(path)


def resolve_asset(base_url: str | None, path: str) -> str:
    """Resolve ``path`` relative to ``base_url``; never raises."""

    if is_external_path(path) or not base_url:
        return path
    try:
        return urljoin(base_url, path)
    except ValueError:
        logger.debug("Falling back to raw asset path %s", path)
        return path


def base_url_for(source: str) -> str:
    """Return the directory URL of the script at ``source``."""

    if source.startswith(("http://", "https://", "file://")):
        return urljoin(source, "./")
    return Path(source).expanduser().resolve().parent.as_uri() + "/"


@dataclass(frozen=True)
class FetchedScript:
    text: str
    source: str
    base_url: str


class ScriptFetcher:
    """Fetch script documents from HTTP(S) URLs, ``file://`` URLs or paths."""

    def __init__(self, client: httpx.Client | None = None, *, timeout: float = 10.0) -> None:
        self._client = client
        self._timeout = timeout

    def fetch(self, source: str) -> FetchedScript:
        """Return the script text at ``source``.

        Raises:
            ScriptLoadError: If the document cannot be read.
        """

        if source.startswith(("http://", "https://")):
            text = self._fetch_http(source)
        elif source.startswith("file://"):
            text = self._read_file(Path(url2pathname(urlparse(source).path)))
        else:
            text = self._read_file(Path(source).expanduser())
        return FetchedScript(text=text, source=source, base_url=base_url_for(source))

    def fetch_optional(self, source: str) -> FetchedScript | None:
        """Like :meth:`fetch`, but return ``None`` when nothing exists at ``source``.

        Raises:
            ScriptLoadError: If the document exists but cannot be read.
        """

        try:
            return self.fetch(source)
        except ScriptLoadError as exc:
            cause = exc.__cause__
            if isinstance(cause, FileNotFoundError):
                return None
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404:
                return None
            raise

    def _fetch_http(self, url: str) -> str:
        logger.info("Fetching script from %s", url)
        try:
            if self._client is not None:
                response = self._client.get(url)
            else:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    response = client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ScriptLoadError(
                f"Failed to fetch script: HTTP {exc.response.status_code}",
                details=url,
            ) from exc
        except httpx.HTTPError as exc:
            raise ScriptLoadError(f"Failed to fetch script: {exc}", details=url) from exc
        return response.text

    @staticmethod
    def _read_file(path: Path) -> str:
        logger.info("Reading script from %s", path)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ScriptLoadError(
                f"Failed to read script: {exc.strerror or exc}", details=str(path)
            ) from exc
        except UnicodeDecodeError as exc:
            raise ScriptLoadError(
                "Failed to read script: file is not valid UTF-8", details=str(path)
            ) from exc


__all__ = [
    "FetchedScript",
    "ScriptFetcher",
    "base_url_for",
    "is_external_path",
    "resolve_asset",
]
