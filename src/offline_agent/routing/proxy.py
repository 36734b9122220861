from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web
from yarl import URL

from offline_agent.core.errors import NetworkError, OfflineUnavailableError
from offline_agent.core.http import Request, RequestMode, filter_headers
from offline_agent.push.local import LocalPushService
from offline_agent.routing.router import RequestRouter

logger = logging.getLogger(__name__)

ROUTER_KEY = web.AppKey("router", RequestRouter)
PUSH_SERVICE_KEY = web.AppKey("push_service", LocalPushService)
ORIGIN_KEY = web.AppKey("origin", URL)


def detect_mode(request: web.Request) -> RequestMode:
    fetch_mode = request.headers.get("Sec-Fetch-Mode")
    if fetch_mode:
        if fetch_mode in ("navigate", "same-origin", "no-cors", "cors"):
            return fetch_mode  # type: ignore[return-value]
        return "same-origin"
    # Clients that do not send fetch metadata: a GET asking for HTML is a page load.
    if request.method == "GET" and "text/html" in request.headers.get("Accept", ""):
        return "navigate"
    return "same-origin"


async def to_router_request(request: web.Request, origin: URL) -> Request:
    body = await request.read() if request.can_read_body else b""
    headers = filter_headers(tuple((k, v) for k, v in request.headers.items() if k.lower() != "host"))
    return Request.build(
        origin.join(request.rel_url),
        method=request.method,
        mode=detect_mode(request),
        headers=headers,
        body=body,
    )


async def handle_proxy(request: web.Request) -> web.StreamResponse:
    router = request.app[ROUTER_KEY]
    routed = await to_router_request(request, request.app[ORIGIN_KEY])
    try:
        response = await router.handle(routed)
    except OfflineUnavailableError as e:
        return web.Response(status=503, text=str(e))
    except NetworkError as e:
        return web.Response(status=502, text=str(e))

    headers = [(name, value) for name, value in response.headers]
    headers.append(("X-Offline-Agent-Cache", "hit" if response.from_cache else "miss"))
    return web.Response(
        status=response.status,
        reason=response.reason or None,
        body=response.body,
        headers=headers,
    )


async def handle_push_delivery(request: web.Request) -> web.StreamResponse:
    push_service = request.app[PUSH_SERVICE_KEY]
    token = request.match_info["token"]
    body = await request.read()
    try:
        await push_service.deliver(token, body or None)
    except LookupError:
        logger.info("push.delivery_rejected reason=gone")
        raise web.HTTPGone()
    return web.Response(status=201)


def build_app(
    *,
    router: RequestRouter,
    origin: str | URL,
    push_service: Optional[LocalPushService] = None,
    push_path: str = "/__push__",
) -> web.Application:
    app = web.Application()
    app[ROUTER_KEY] = router
    app[ORIGIN_KEY] = URL(origin) if isinstance(origin, str) else origin
    if push_service is not None:
        app[PUSH_SERVICE_KEY] = push_service
        app.router.add_post(push_path.rstrip("/") + "/{token}", handle_push_delivery)
    app.router.add_route("*", "/{tail:.*}", handle_proxy)
    return app
