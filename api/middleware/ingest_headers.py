"""
Public ingest headers - CORS and no-store caching for beacon, pixel and SDK endpoints
"""
from starlette.datastructures import MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

PUBLIC_INGEST_PREFIXES = (
    "/api/crawler-events",
    "/api/track/",
    "/api/tracking/",
)

class PublicIngestHeadersMiddleware:
    """
    Customer sites post to the ingest endpoints from any origin, so these paths
    bypass the dashboard CORS allow-list:
    - preflight OPTIONS answered directly
    - Access-Control-Allow-* set to any origin
    - responses never cached by browsers or proxies
    """

    def __init__(self, app: ASGIApp, prefixes=PUBLIC_INGEST_PREFIXES):
        self.app = app
        self.prefixes = tuple(prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http" or not self._is_public(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(status_code=204, headers=self._cors_headers())
            await response(scope, receive, send)
            return

        async def _send(message: Message):
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for key, value in self._cors_headers().items():
                    headers[key] = value
                if "cache-control" not in headers:
                    headers["cache-control"] = "no-store"
            await send(message)

        await self.app(scope, receive, _send)

    def _is_public(self, path: str) -> bool:
        return path.startswith(self.prefixes)

    @staticmethod
    def _cors_headers() -> dict:
        return {
            "access-control-allow-origin": "*",
            "access-control-allow-methods": "GET, POST, OPTIONS",
            "access-control-allow-headers": "Content-Type, Authorization, User-Agent, Referer",
            "access-control-max-age": "86400",
        }
