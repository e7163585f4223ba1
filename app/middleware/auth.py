from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Interactive API docs stay reachable without a token
DOCS_PREFIXES = ("/docs", "/openapi", "/redoc")


def _needs_token(request: Request) -> bool:
    path = request.url.path
    if path.startswith(DOCS_PREFIXES) or not path.startswith("/api/"):
        return False
    # CORS preflight never carries credentials
    return request.method != "OPTIONS"


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject /api requests without a Bearer token.

    Only the presence of the token is checked here; signature, audience and
    family membership are verified by app.routes.auth for each route.
    """

    async def dispatch(self, request: Request, call_next):
        if not _needs_token(request):
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})
        return await call_next(request)
