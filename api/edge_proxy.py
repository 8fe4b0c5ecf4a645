"""
EdgeLog reverse proxy.

Forwards every request to the origin, returns the origin's response and
hands a compact request log record to the log actor after the response
has been sent. The hand-off never affects the proxied response.
"""

import logging
import os
from datetime import UTC, datetime

import httpx
from fastapi import BackgroundTasks, FastAPI, Request, Response
from pydantic import BaseModel

from edgelog.host import DEFAULT_ACTOR_NAME, ActorNamespace, namespace_from_env

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ORIGIN_URL = os.getenv("EDGELOG_ORIGIN_URL", "http://localhost:8080")

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# Not forwarded in either direction
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# httpx decodes bodies and recomputes lengths
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding", "content-length"}
STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}


class EdgeRequestLog(BaseModel):
    """One proxied request, as shipped to the collector."""

    EdgeStartTimestamp: str
    ClientIP: str = ""
    ClientCountry: str = ""
    ClientCity: str = ""
    ClientRequestScheme: str = ""
    ClientRequestHost: str = ""
    ClientRequestURI: str = ""
    ClientRequestMethod: str = ""
    ClientRequestUserAgent: str = ""
    ClientRequestReferer: str = ""
    EdgeResponseStatus: int = 0


def build_log_record(request: Request, status_code: int, started_at: datetime | None = None) -> EdgeRequestLog:
    """Build the log record for a proxied request from its headers and URL."""
    headers = request.headers
    url = request.url
    uri = url.path + (f"?{url.query}" if url.query else "")

    return EdgeRequestLog(
        EdgeStartTimestamp=(started_at or datetime.now(UTC)).isoformat(),
        ClientIP=headers.get("cf-connecting-ip") or headers.get("x-real-ip") or "",
        ClientCountry=headers.get("cf-ipcountry", ""),
        ClientCity=headers.get("cf-ipcity", ""),
        ClientRequestScheme=headers.get("x-forwarded-proto") or url.scheme or "",
        ClientRequestHost=headers.get("host") or url.netloc,
        ClientRequestURI=uri,
        ClientRequestMethod=request.method,
        ClientRequestUserAgent=headers.get("user-agent", ""),
        ClientRequestReferer=headers.get("referer", ""),
        EdgeResponseStatus=int(status_code or 0),
    )


async def ship_record(namespace: ActorNamespace, record: dict, actor_name: str = DEFAULT_ACTOR_NAME):
    """Fire-and-forget hand-off; failures are only logged."""
    try:
        await namespace.get(actor_name).append(record)
    except Exception as e:
        logger.error(f"Failed to hand off log record: {e}", exc_info=True)


def create_proxy_app(
    namespace: ActorNamespace | None = None,
    origin_url: str = ORIGIN_URL,
    origin_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    app = FastAPI(
        title="EdgeLog Proxy",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.namespace = namespace
    app.state.origin_client = origin_client
    owns_namespace = namespace is None
    owns_client = origin_client is None

    @app.on_event("startup")
    async def startup():
        if app.state.namespace is None:
            app.state.namespace = await namespace_from_env()
        if app.state.origin_client is None:
            app.state.origin_client = httpx.AsyncClient(follow_redirects=False, timeout=30.0)
        logger.info(f"EdgeLog proxy started, origin {origin_url}")

    @app.on_event("shutdown")
    async def shutdown():
        if owns_client and app.state.origin_client is not None:
            await app.state.origin_client.aclose()
            app.state.origin_client = None
        if owns_namespace and app.state.namespace is not None:
            await app.state.namespace.stop()
            app.state.namespace = None

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def proxy(request: Request, background_tasks: BackgroundTasks):
        started_at = datetime.now(UTC)
        target = origin_url.rstrip("/") + request.url.path
        if request.url.query:
            target += f"?{request.url.query}"

        forward_headers = {
            k: v for k, v in request.headers.items() if k.lower() not in STRIPPED_REQUEST_HEADERS
        }

        try:
            upstream = await app.state.origin_client.request(
                request.method,
                target,
                headers=forward_headers,
                content=await request.body(),
            )
            response = Response(content=upstream.content, status_code=upstream.status_code)
            for key, value in upstream.headers.multi_items():
                if key.lower() not in STRIPPED_RESPONSE_HEADERS:
                    response.headers.append(key, value)
        except httpx.HTTPError as e:
            logger.warning(f"Origin request to {target} failed: {e}")
            response = Response(content=b"Bad gateway", status_code=502, media_type="text/plain")

        record = build_log_record(request, response.status_code, started_at)
        background_tasks.add_task(ship_record, app.state.namespace, record.model_dump())
        return response

    return app


app = create_proxy_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
