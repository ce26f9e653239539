"""
Link preview enrichment for posts.

Post creation hands preview work to LinkPreviewWorker through a bounded
queue and never waits on it. Fetch or parse failures are logged and dropped;
they never affect the post row.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from attestation_indexer.errors import SideEffectFailure

logger = logging.getLogger(__name__)

URL_REGEX = re.compile(
    r"[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)"
)

META_KEYS = ("description", "image", "author")


def extract_urls(text: Optional[str]) -> List[str]:
    """Find link-like tokens in post text, normalized to https URLs"""
    if not text:
        return []
    urls = [f"https://{match}" for match in URL_REGEX.findall(text)]
    return [url for url in urls if "@" not in url]


class _MetaTagParser(HTMLParser):
    """Collects <title>, <meta> and the shortcut icon link"""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.title: Optional[str] = None
        self.favicon: Optional[str] = None
        self.meta: Dict[str, str] = {}
        self._in_title = False
        self._title_parts: List[str] = []

    def handle_starttag(self, tag, attrs):
        attrs = {k.lower(): v for k, v in attrs if v is not None}
        if tag == "title" and self.title is None:
            self._in_title = True
        elif tag == "meta":
            key = attrs.get("name") or attrs.get("property")
            content = attrs.get("content")
            if key and content is not None:
                self.meta.setdefault(key.lower(), content)
        elif tag == "link" and attrs.get("rel", "").lower() == "shortcut icon":
            self.favicon = self.favicon or attrs.get("href")

    def handle_endtag(self, tag):
        if tag == "title" and self._in_title:
            self._in_title = False
            self.title = "".join(self._title_parts).strip()

    def handle_data(self, data):
        if self._in_title:
            self._title_parts.append(data)


def parse_meta_tags(html: str) -> Dict[str, Optional[str]]:
    """Extract preview fields, preferring plain, then og:, then twitter: meta names"""
    parser = _MetaTagParser()
    parser.feed(html)
    parser.close()

    def get_meta_tag(name: str) -> Optional[str]:
        for key in (name, f"og:{name}", f"twitter:{name}"):
            if parser.meta.get(key):
                return parser.meta[key]
        return None

    preview: Dict[str, Optional[str]] = {
        "title": parser.title or None,
        "favicon": parser.favicon,
    }
    for key in META_KEYS:
        preview[key] = get_meta_tag(key)
    return preview


@dataclass(frozen=True)
class LinkPreviewTask:
    post_id: str
    url: str
    created_at: int


Fetcher = Callable[[str], Awaitable[Dict[str, Any]]]


class LinkPreviewWorker:
    """Best-effort background worker that stores link previews for posts"""

    def __init__(
        self,
        db,
        fetcher: Optional[Fetcher] = None,
        max_queue_size: int = 1000,
        fetch_timeout: int = 10,
    ):
        self.db = db
        self.fetch_timeout = fetch_timeout
        self.queue: "asyncio.Queue[LinkPreviewTask]" = asyncio.Queue(maxsize=max_queue_size)
        self.session: Optional[aiohttp.ClientSession] = None
        self._fetcher = fetcher
        self._task: Optional[asyncio.Task] = None

        self.metrics = {
            'queued': 0,
            'dropped': 0,
            'stored': 0,
            'failed': 0,
        }

    async def initialize(self):
        """Initialize HTTP session and start the worker task"""
        if self._fetcher is None and not self.session:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.fetch_timeout),
                headers={"User-Agent": "attestation-indexer link preview"},
            )
        if not self._task:
            self._task = asyncio.create_task(self._run())

    async def close(self):
        """Stop the worker task and close HTTP session"""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self.session:
            await self.session.close()
            self.session = None

    def submit(self, task: LinkPreviewTask) -> bool:
        """Queue a preview without waiting; a full queue drops the task"""
        try:
            self.queue.put_nowait(task)
        except asyncio.QueueFull:
            self.metrics['dropped'] += 1
            logger.warning(f"[PREVIEW] Queue full, dropping preview for post {task.post_id}")
            return False

        self.metrics['queued'] += 1
        return True

    async def _run(self):
        while True:
            task = await self.queue.get()
            try:
                await self.process(task)
            finally:
                self.queue.task_done()

    async def fetch(self, url: str) -> Dict[str, Any]:
        """Fetch a page and extract its preview fields"""
        if self._fetcher is not None:
            return await self._fetcher(url)

        if not self.session:
            raise RuntimeError("Link preview session is not initialized")

        async with self.session.get(url) as resp:
            resp.raise_for_status()
            html = await resp.text(errors="replace")

        preview = parse_meta_tags(html)
        preview["url"] = url
        return preview

    async def process(self, task: LinkPreviewTask) -> bool:
        """Fetch and store one preview; failures are logged, never raised"""
        try:
            logger.info(f"[PREVIEW] Fetching link preview for {task.url}")
            try:
                preview = await self.fetch(task.url)
            except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeError) as e:
                raise SideEffectFailure(f"fetch {task.url} failed: {e}") from e

            if not preview.get("title"):
                logger.debug(f"[PREVIEW] No title for {task.url}, skipping")
                return False

            await self.db.upsert_link_preview({
                'post_id': task.post_id,
                'title': preview["title"],
                'description': preview.get("description") or "",
                'image': preview.get("image") or "",
                'url': task.url,
                'created_at': task.created_at,
            })
            self.metrics['stored'] += 1
            logger.info(f"[PREVIEW] Created link preview for post {task.post_id}")
            return True

        except Exception as e:
            self.metrics['failed'] += 1
            logger.warning(f"[PREVIEW] Unable to fetch link preview for post {task.post_id}: {e}")
            return False

    async def refresh_post(self, post_id: str) -> bool:
        """Re-run preview extraction for a stored post (awaited)"""
        post = await self.db.get_post(post_id)
        if not post:
            return False

        urls = extract_urls(post['content'])
        if not urls:
            return False

        return await self.process(LinkPreviewTask(post_id, urls[0], post['created_at']))
