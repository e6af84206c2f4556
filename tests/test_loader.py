from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from novelscript.errors import ScriptLoadError
from novelscript.loader import (
    ScriptFetcher,
    base_url_for,
    is_external_path,
    resolve_asset,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("https://cdn.example.com/a.png", True),
        ("data:image/png;base64,AAAA", True),
        ("blob:https://example.com/123", True),
        ("bg/room.png", False),
        ("../shared/room.png", False),
        ("C:\\assets\\room.png", False),
    ],
)
def test_is_external_path(path: str, expected: bool) -> None:
    assert is_external_path(path) is expected


def test_resolve_asset_against_base_url() -> None:
    base = "https://example.com/games/demo/"

    assert resolve_asset(base, "bg/room.png") == "https://example.com/games/demo/bg/room.png"
    assert resolve_asset(base, "../shared/a.ogg") == "https://example.com/games/shared/a.ogg"
    assert resolve_asset(base, "https://cdn.example.com/x.png") == "https://cdn.example.com/x.png"
    assert resolve_asset("", "bg/room.png") == "bg/room.png"
    assert resolve_asset(None, "bg/room.png") == "bg/room.png"


def test_base_url_for_urls_and_paths(tmp_path: Path) -> None:
    assert base_url_for("https://example.com/games/demo/story.yaml") == (
        "https://example.com/games/demo/"
    )
    local = base_url_for(str(tmp_path / "story.yaml"))
    assert local.startswith("file://")
    assert local.endswith("/")


def test_fetch_over_http_uses_client() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, text="meta: {title: Remote}\n")

    fetcher = ScriptFetcher(_client(handler))
    fetched = fetcher.fetch("https://example.com/games/demo/story.yaml")

    assert requested == ["https://example.com/games/demo/story.yaml"]
    assert fetched.text.startswith("meta:")
    assert fetched.base_url == "https://example.com/games/demo/"


def test_fetch_reports_http_status() -> None:
    fetcher = ScriptFetcher(_client(lambda request: httpx.Response(404)))

    with pytest.raises(ScriptLoadError) as excinfo:
        fetcher.fetch("https://example.com/missing.yaml")

    assert excinfo.value.message == "Failed to fetch script: HTTP 404"
    assert excinfo.value.to_payload().kind == "load"


def test_fetch_reports_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ScriptLoadError) as excinfo:
        ScriptFetcher(_client(handler)).fetch("https://example.com/story.yaml")

    assert excinfo.value.message.startswith("Failed to fetch script:")


def test_fetch_local_path_and_file_url(tmp_path: Path) -> None:
    script = tmp_path / "story.yaml"
    script.write_text("meta: {title: Local}\n", encoding="utf-8")
    fetcher = ScriptFetcher()

    from_path = fetcher.fetch(str(script))
    from_url = fetcher.fetch(script.as_uri())

    assert from_path.text == from_url.text == "meta: {title: Local}\n"
    assert from_path.base_url == tmp_path.resolve().as_uri() + "/"


def test_fetch_missing_file_raises_load_error(tmp_path: Path) -> None:
    with pytest.raises(ScriptLoadError) as excinfo:
        ScriptFetcher().fetch(str(tmp_path / "missing.yaml"))

    assert excinfo.value.message.startswith("Failed to read script:")


def test_fetch_rejects_non_utf8_file(tmp_path: Path) -> None:
    script = tmp_path / "story.yaml"
    script.write_bytes(b"meta:\n  title: \xff\xfe bad\n")

    with pytest.raises(ScriptLoadError) as excinfo:
        ScriptFetcher().fetch(str(script))

    assert excinfo.value.message == "Failed to read script: file is not valid UTF-8"
