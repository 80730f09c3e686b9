import pytest

from domains2providers import fetch_sources, pipeline
from domains2providers.config import Category
from domains2providers.fetch_sources import FetchError


@pytest.fixture
def categories():
    return [
        Category("ntp", "domain", ("u/ntp",)),
        Category("proxy", "domain", ("u/proxy",), ("u/direct",)),
        Category("cn-ips", "ipcidr", ("u/cn-ips",)),
        Category("broken", "domain", ("u/ntp", "u/down")),
    ]


@pytest.fixture
def fetched():
    return {
        "u/ntp": ["time.apple.com", "time.asia.apple.com", "pool.ntp.org", "# ntp"],
        "u/proxy": ["google.com", "www.google.com", "baidu.com"],
        "u/direct": ["baidu.com"],
        "u/cn-ips": ["1.0.1.0/24", "1.0.2.0/23"],
        "u/down": FetchError("u/down", "response HTTP 502"),
    }


def _read(path):
    return path.read_text(encoding="utf-8")


def test_transform_writes_categories(tmp_path, categories, fetched):
    report = pipeline.transform(tmp_path, categories, fetched=fetched)

    assert _read(tmp_path / "ntp.yaml") == (
        'payload:\n  - "+.pool.ntp.org"\n  - "+.time.apple.com"\n  - "+.time.asia.apple.com"\n'
    )
    assert _read(tmp_path / "proxy.yaml") == 'payload:\n  - "+.google.com"\n'
    assert _read(tmp_path / "cn-ips.yaml") == 'payload:\n  - "1.0.1.0/24"\n  - "1.0.2.0/23"\n'
    assert not (tmp_path / "broken.yaml").exists()
    assert not report.ok
    assert "HTTP 502" in report.failed["broken"]
    assert len(report.written) == 3


def test_transform_with_community_data(tmp_path, fetched):
    data = tmp_path / "data"
    data.mkdir()
    (data / "apple").write_text("apple.com\nfull:ads.apple.test @ads\n", encoding="utf-8")
    out = tmp_path / "out"

    report = pipeline.transform(
        out, [Category("ntp", "domain", ("u/ntp",))], data, fetched=fetched
    )

    assert report.ok
    assert _read(out / "apple.yaml") == 'payload:\n  - "+.apple.com"\n  - "ads.apple.test"\n'
    assert _read(out / "apple@ads.yaml") == 'payload:\n  - "ads.apple.test"\n'
    assert _read(out / "ads.yaml") == 'payload:\n  - "ads.apple.test"\n'
    assert (out / "ntp.yaml").exists()


def test_main_uses_config_and_fetch_layer(tmp_path, monkeypatch):
    config = tmp_path / "categories.json"
    config.write_text(
        '[{"name": "ntp", "behavior": "domain", "sources": ["https://e.test/ntp.txt"]}]',
        encoding="utf-8",
    )
    requested = []

    async def fake_fetch_all(urls, *args):
        requested.extend(urls)
        return {"https://e.test/ntp.txt": ["ntp.org", "a.ntp.org"]}

    monkeypatch.setattr(fetch_sources, "fetch_all", fake_fetch_all)

    code = pipeline.main([str(tmp_path / "out"), "--config", str(config), "--retries", "0"])

    assert code == 0
    assert requested == ["https://e.test/ntp.txt"]
    assert _read(tmp_path / "out" / "ntp.yaml") == 'payload:\n  - "+.ntp.org"\n'


def test_main_reports_failed_category(tmp_path, monkeypatch):
    config = tmp_path / "categories.json"
    config.write_text('[{"name": "ntp", "sources": ["https://e.test/ntp.txt"]}]', encoding="utf-8")

    async def fake_fetch_all(urls, *args):
        return {url: FetchError(url, "Timeout") for url in urls}

    monkeypatch.setattr(fetch_sources, "fetch_all", fake_fetch_all)

    assert pipeline.main([str(tmp_path / "out"), "--config", str(config)]) == 1
    assert not (tmp_path / "out" / "ntp.yaml").exists()


def test_main_bad_config(tmp_path):
    config = tmp_path / "categories.json"
    config.write_text('[{"name": "x", "behavior": "classical", "sources": ["u"]}]', encoding="utf-8")

    assert pipeline.main([str(tmp_path / "out"), "--config", str(config)]) == 2


def test_main_invalid_url_only_fails_its_category(tmp_path, monkeypatch):
    config = tmp_path / "categories.json"
    config.write_text(
        '[{"name": "ntp", "sources": ["https://e.test/ntp.txt"]},'
        ' {"name": "typo", "sources": ["http://[bad"]}]',
        encoding="utf-8",
    )
    real_fetch_lines = fetch_sources.fetch_lines

    async def fetch_lines(session, url, *args, **kwargs):
        if url == "https://e.test/ntp.txt":
            return ["ntp.org"]
        return await real_fetch_lines(session, url, *args, **kwargs)

    monkeypatch.setattr(fetch_sources, "fetch_lines", fetch_lines)

    code = pipeline.main([str(tmp_path / "out"), "--config", str(config), "--retries", "0"])

    assert code == 1
    assert _read(tmp_path / "out" / "ntp.yaml") == 'payload:\n  - "+.ntp.org"\n'
    assert not (tmp_path / "out" / "typo.yaml").exists()
