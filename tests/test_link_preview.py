"""Tests for link preview extraction and the best-effort preview worker."""

import aiohttp
import pytest

from attestation_indexer.link_preview import (
    LinkPreviewTask,
    LinkPreviewWorker,
    extract_urls,
    parse_meta_tags,
)

PAGE = """
<html>
  <head>
    <title> Example Domain </title>
    <link rel="shortcut icon" href="/favicon.ico">
    <meta property="og:description" content="An og description">
    <meta name="twitter:description" content="A twitter description">
    <meta name="twitter:image" content="https://example.com/card.png">
    <meta name="author" content="Alice">
  </head>
  <body>hi</body>
</html>
"""


def test_extract_urls():
    assert extract_urls("see example.com and docs.python.org/3/library") == [
        "https://example.com",
        "https://docs.python.org/3/library",
    ]


def test_extract_urls_skips_emails_and_empty():
    assert extract_urls("write to alice@example.com") == []
    assert extract_urls("") == []
    assert extract_urls(None) == []


def test_parse_meta_tags_prefers_plain_then_og_then_twitter():
    preview = parse_meta_tags(PAGE)

    assert preview["title"] == "Example Domain"
    assert preview["favicon"] == "/favicon.ico"
    assert preview["description"] == "An og description"
    assert preview["image"] == "https://example.com/card.png"
    assert preview["author"] == "Alice"


def test_parse_meta_tags_without_title():
    preview = parse_meta_tags("<html><head></head></html>")
    assert preview["title"] is None
    assert preview["description"] is None


@pytest.mark.asyncio
async def test_process_stores_preview(db):
    async def fetcher(url):
        return {**parse_meta_tags(PAGE), "url": url}

    worker = LinkPreviewWorker(db, fetcher=fetcher)
    stored = await worker.process(LinkPreviewTask("0x01", "https://example.com", 1700000000))

    assert stored
    row = db.link_previews["0x01"]
    assert row['title'] == "Example Domain"
    assert row['description'] == "An og description"
    assert row['url'] == "https://example.com"
    assert worker.metrics['stored'] == 1


@pytest.mark.asyncio
async def test_process_swallows_fetch_failures(db):
    async def fetcher(url):
        raise aiohttp.ClientConnectionError("connection refused")

    worker = LinkPreviewWorker(db, fetcher=fetcher)
    stored = await worker.process(LinkPreviewTask("0x01", "https://example.com", 1700000000))

    assert not stored
    assert db.link_previews == {}
    assert worker.metrics['failed'] == 1


@pytest.mark.asyncio
async def test_process_skips_page_without_title(db):
    async def fetcher(url):
        return {"title": None, "url": url}

    worker = LinkPreviewWorker(db, fetcher=fetcher)
    assert not await worker.process(LinkPreviewTask("0x01", "https://example.com", 1700000000))
    assert db.link_previews == {}


@pytest.mark.asyncio
async def test_submit_drops_when_queue_full(db):
    worker = LinkPreviewWorker(db, max_queue_size=1)

    assert worker.submit(LinkPreviewTask("0x01", "https://a.com", 1))
    assert not worker.submit(LinkPreviewTask("0x02", "https://b.com", 2))

    assert worker.metrics == {'queued': 1, 'dropped': 1, 'stored': 0, 'failed': 0}


@pytest.mark.asyncio
async def test_background_worker_drains_queue(db):
    async def fetcher(url):
        return {"title": "Queued", "url": url}

    worker = LinkPreviewWorker(db, fetcher=fetcher)
    await worker.initialize()
    try:
        worker.submit(LinkPreviewTask("0x01", "https://example.com", 1700000000))
        await worker.queue.join()
    finally:
        await worker.close()

    assert db.link_previews["0x01"]['title'] == "Queued"


@pytest.mark.asyncio
async def test_refresh_post(db):
    async def fetcher(url):
        return {"title": "Refreshed", "url": url}

    db.posts["0x01"] = {'id': "0x01", 'content': "read example.com/a", 'created_at': 5}
    worker = LinkPreviewWorker(db, fetcher=fetcher)

    assert await worker.refresh_post("0x01")
    assert db.link_previews["0x01"]['url'] == "https://example.com/a"
    assert not await worker.refresh_post("0x02")
