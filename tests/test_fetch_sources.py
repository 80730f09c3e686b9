import asyncio
from types import SimpleNamespace

import aiohttp
import pytest
from aiohttp import web
from aiohttp import test_utils

from domains2providers import fetch_sources
from domains2providers.fetch_sources import FetchError


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    monkeypatch.setattr(fetch_sources, "_backoff_delay", lambda attempt: 0)


def _serve(routes, scenario):
    """Start a local server with `routes` and run `scenario(server)` against it."""

    async def _main():
        app = web.Application()
        for path, handler in routes.items():
            app.router.add_get(path, handler)
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            return await scenario(server)
        finally:
            await server.close()

    return asyncio.run(_main())


def _text(body, status=200):
    async def handler(request):
        return web.Response(body=body.encode("utf-8"), status=status)

    return handler


def _flaky(fail_times, status=503):
    calls = {"n": 0}

    async def handler(request):
        calls["n"] += 1
        if calls["n"] <= fail_times:
            return web.Response(status=status)
        return web.Response(text="ok.com\n")

    return handler, calls


async def _fetch(server, path, **kwargs):
    async with aiohttp.ClientSession() as session:
        return await fetch_sources.fetch_lines(
            session, str(server.make_url(path)), per_host_delay=0, **kwargs
        )


def test_fetch_lines_returns_all_lines():
    body = "\ufeffexample.com\r\nfull:a.example.org\n\n# done\n"

    lines = _serve({"/list.txt": _text(body)}, lambda s: _fetch(s, "/list.txt"))
    assert lines == ["example.com", "full:a.example.org", "", "# done"]


def test_fetch_lines_retries_transient_status():
    handler, calls = _flaky(2)

    lines = _serve({"/flaky": handler}, lambda s: _fetch(s, "/flaky", retries=3))
    assert lines == ["ok.com"]
    assert calls["n"] == 3


def test_fetch_lines_gives_up_after_retries():
    handler, calls = _flaky(10)

    with pytest.raises(FetchError, match="HTTP 503"):
        _serve({"/down": handler}, lambda s: _fetch(s, "/down", retries=1))
    assert calls["n"] == 2


def test_fetch_lines_does_not_retry_client_errors():
    handler, calls = _flaky(10, status=404)

    with pytest.raises(FetchError, match="HTTP 404") as excinfo:
        _serve({"/missing": handler}, lambda s: _fetch(s, "/missing", retries=3))
    assert calls["n"] == 1
    assert excinfo.value.url.endswith("/missing")


def test_fetch_all_reports_each_url():
    handler, calls = _flaky(10, status=500)

    async def scenario(server):
        good = str(server.make_url("/good"))
        bad = str(server.make_url("/bad"))
        results = await fetch_sources.fetch_all(
            [good, bad, good], retries=0, per_host_delay=0
        )
        return good, bad, results

    good, bad, results = _serve({"/good": _text("a.com\nb.com\n"), "/bad": handler}, scenario)
    assert set(results) == {good, bad}
    assert results[good] == ["a.com", "b.com"]
    assert isinstance(results[bad], FetchError)
    assert calls["n"] == 1


def test_fetch_all_empty():
    assert asyncio.run(fetch_sources.fetch_all([])) == {}


def test_get_origin():
    assert fetch_sources._get_origin("https://raw.example.com/a/b.txt") == "https://raw.example.com"
    assert fetch_sources._get_origin("http://h:8080/x") == "http://h:8080"


@pytest.mark.parametrize("url", ["http://[bad", "http://example.com:99999/x"])
def test_fetch_all_reports_invalid_urls(url):
    results = asyncio.run(fetch_sources.fetch_all([url], retries=0, per_host_delay=0))

    assert isinstance(results[url], FetchError)
    assert "Invalid URL" in results[url].reason


def test_fetch_all_invalid_url_does_not_block_others():
    async def scenario(server):
        good = str(server.make_url("/good"))
        results = await fetch_sources.fetch_all(["http://[bad", good], per_host_delay=0)
        return good, results

    good, results = _serve({"/good": _text("a.com\n")}, scenario)
    assert results[good] == ["a.com"]
    assert isinstance(results["http://[bad"], FetchError)


def test_host_slots_are_reserved_before_sleeping(monkeypatch):
    monkeypatch.setattr(fetch_sources, "time", SimpleNamespace(monotonic=lambda: 100.0))
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr(fetch_sources, "asyncio", SimpleNamespace(sleep=fake_sleep))
    host_last_times = {}

    async def scenario():
        await asyncio.gather(
            *(
                fetch_sources._wait_for_host_slot("https://a.test", host_last_times, 0.5)
                for _ in range(3)
            ),
            fetch_sources._wait_for_host_slot("https://b.test", host_last_times, 0.5),
        )

    asyncio.run(scenario())

    assert sorted(waits) == [0.5, 1.0]
    assert host_last_times == {"https://a.test": 101.0, "https://b.test": 100.0}
