import pytest
import requests

WXR_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
    xmlns:content="http://purl.org/rss/1.0/modules/content/"
    xmlns:wp="http://wordpress.org/export/1.2/">
<channel>
    <title>Example Site</title>
{items}
</channel>
</rss>
"""

ITEM_TEMPLATE = """    <item>
        <title>attachment</title>
        <wp:post_type>attachment</wp:post_type>
        <wp:attachment_url>{url}</wp:attachment_url>
    </item>"""


def make_export(path, urls):
    items = "\n".join(ITEM_TEMPLATE.format(url=url) for url in urls)
    path.write_text(WXR_TEMPLATE.format(items=items), encoding="utf-8")
    return path


class FakeResponse:
    def __init__(self, status_code=200, body=b"data"):
        self.status_code = status_code
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]


class FakeSession:
    """Replays scripted results per URL; a URL with no script succeeds."""

    def __init__(self, script=None):
        self.script = {url: list(results) for url, results in (script or {}).items()}
        self.calls = []

    def get(self, url, stream=False):
        self.calls.append(url)
        results = self.script.get(url)
        result = results.pop(0) if results else FakeResponse(body=url.encode())
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sleeps():
    """Recorded backoff delays; pass sleeps.append as the sleep function."""
    return []
