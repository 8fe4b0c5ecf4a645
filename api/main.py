"""
EdgeLog actor transport.

Exposes the log actor operations over HTTP:
    POST /append    record body (JSON)   -> 204
    POST /flush     forced flush attempt -> 204
    GET  /__health  liveness probe       -> 200 "ok"
Anything else answers 404.
"""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from edgelog.config import ConfigurationError
from edgelog.host import DEFAULT_ACTOR_NAME, ActorNamespace, namespace_from_env

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(namespace: ActorNamespace | None = None, actor_name: str = DEFAULT_ACTOR_NAME) -> FastAPI:
    """
    Build the transport app.

    With no namespace one is built from the environment at startup and
    closed at shutdown; a namespace passed in stays owned by the caller.
    """
    app = FastAPI(
        title="EdgeLog Actor",
        description="Durable batching log shipper",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.namespace = namespace
    owns_namespace = namespace is None

    @app.on_event("startup")
    async def startup():
        if app.state.namespace is None:
            app.state.namespace = await namespace_from_env()
            logger.info("EdgeLog actor transport started")

    @app.on_event("shutdown")
    async def shutdown():
        if owns_namespace and app.state.namespace is not None:
            await app.state.namespace.stop()
            app.state.namespace = None

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc}")
        return PlainTextResponse(str(exc), status_code=500)

    def actor():
        return app.state.namespace.get(actor_name)

    @app.post("/append")
    async def append(request: Request):
        """Append one record to the pending batch"""
        try:
            record = await request.json()
        except ValueError:
            return PlainTextResponse("Invalid JSON", status_code=400)
        await actor().append(record)
        return Response(status_code=204)

    @app.post("/flush")
    async def flush():
        """Force an out-of-band flush attempt"""
        await actor().flush()
        return Response(status_code=204)

    @app.get("/__health")
    async def health():
        """Liveness probe"""
        return PlainTextResponse("ok")

    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def not_found(path: str):
        return PlainTextResponse("Not found", status_code=404)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
