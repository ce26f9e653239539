"""
HTTP trigger surface.

POST /update           run one refresh cycle (creation, then revocation stream)
POST /update/{post_id} re-fetch the link preview of a stored post
GET  /health           liveness and counters
"""

import logging
from dataclasses import asdict

from aiohttp import web

logger = logging.getLogger(__name__)


def create_app(poller, link_previews, processor=None) -> web.Application:
    app = web.Application()

    async def update(request: web.Request) -> web.Response:
        try:
            results = await poller.refresh()
        except Exception as e:
            logger.error(f"[HTTP] Refresh failed: {e}", exc_info=True)
            return web.json_response({"status": "error", "error": str(e)}, status=500)

        busy = any(result.busy for result in results)
        return web.json_response(
            {"status": "busy" if busy else "ok", "streams": [asdict(r) for r in results]},
            status=409 if busy else 200,
        )

    async def update_post(request: web.Request) -> web.Response:
        post_id = request.match_info["post_id"]
        refreshed = await link_previews.refresh_post(post_id)
        return web.json_response({"post_id": post_id, "refreshed": refreshed})

    async def health(request: web.Request) -> web.Response:
        body = {"status": "ok", "polling": poller.busy, "poller": poller.get_metrics()}
        if processor is not None:
            body["processor"] = processor.get_metrics()
        return web.json_response(body)

    app.router.add_post("/update", update)
    app.router.add_post("/update/{post_id}", update_post)
    app.router.add_get("/health", health)

    return app
