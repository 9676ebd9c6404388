from fastapi import FastAPI, Request
from starlette.responses import Response

# Always overwritten.
FORCED_HEADERS = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'same-origin',
}
# Only set when the route did not choose its own value.
DEFAULT_HEADERS = {
    'Cache-Control': 'no-store',
}


def install_security_headers(app: FastAPI) -> None:
    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.update(FORCED_HEADERS)
        for name, value in DEFAULT_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
