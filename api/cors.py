"""
api/cors.py -- Origin-based CORS policy for the /api namespace.

Replaces starlette's CORSMiddleware because two behaviours are needed that it
does not offer:
  - "*.example.com" entries that match any subdomain (and the bare domain)
  - preflights from a disallowed origin are refused with 403 instead of
    answered with a 200 that merely omits the allow headers

The allowed origin is always reflected verbatim; "*" is never sent, because
credentials (cookies) are allowed.

Requests without an Origin header are same-origin or non-browser and are
always allowed. CORS is advisory for browsers; the session + CSRF checks in
RequestGate are what actually protect state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlsplit

from starlette.requests import Request
from starlette.responses import Response

from core.config import Settings

DEV_ORIGINS = ["http://localhost:4321", "http://localhost:3000", "http://127.0.0.1:4321"]


@dataclass
class CorsConfig:
    allowed_origins: list[str] = field(default_factory=list)
    allowed_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    allowed_headers: list[str] = field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-CSRF-Token", "X-Requested-With"]
    )
    exposed_headers: list[str] = field(default_factory=lambda: ["X-CSRF-Token"])
    allow_credentials: bool = True
    max_age: int = 60 * 60 * 24

    @classmethod
    def from_settings(cls, settings: Settings) -> CorsConfig:
        """ALLOWED_ORIGINS when set; otherwise localhost variants in dev and nothing in production."""
        origins = settings.origin_list()
        if not origins and not settings.is_production:
            origins = list(DEV_ORIGINS)
        return cls(allowed_origins=origins)


def _host_of(origin: str) -> str | None:
    try:
        parts = urlsplit(origin)
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return host


class CorsPolicy:
    def __init__(self, config: CorsConfig) -> None:
        self.config = config

    def is_allowed(self, origin: str | None) -> bool:
        if not origin:
            return True
        host: str | None = None
        host_parsed = False
        for allowed in self.config.allowed_origins:
            if allowed == origin:
                return True
            if allowed.startswith("*."):
                if not host_parsed:
                    host = _host_of(origin)
                    host_parsed = True
                if host is None:
                    continue
                domain = allowed[2:].lower()
                if host == domain or host.endswith("." + domain):
                    return True
        return False

    def cors_headers(self, request: Request) -> dict[str, str]:
        origin = request.headers.get("origin")
        if not origin or not self.is_allowed(origin):
            return {}
        headers = {"Access-Control-Allow-Origin": origin}
        if self.config.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
        return headers

    @staticmethod
    def is_preflight(request: Request) -> bool:
        return (
            request.method == "OPTIONS"
            and "origin" in request.headers
            and "access-control-request-method" in request.headers
        )

    def preflight_response(self, request: Request) -> Response:
        """204 with the full allow set for an allowed origin; bare 403 otherwise."""
        headers = self.cors_headers(request)
        if not headers:
            return Response(status_code=403)
        headers["Access-Control-Allow-Methods"] = ", ".join(self.config.allowed_methods)
        headers["Access-Control-Allow-Headers"] = ", ".join(self.config.allowed_headers)
        headers["Access-Control-Max-Age"] = str(self.config.max_age)
        if self.config.exposed_headers:
            headers["Access-Control-Expose-Headers"] = ", ".join(self.config.exposed_headers)
        return Response(status_code=204, headers=headers)

    def apply_headers(self, response: Response, request: Request) -> Response:
        headers = self.cors_headers(request)
        if not headers:
            return response
        vary = headers.pop("Vary")
        for name, value in headers.items():
            response.headers[name] = value
        existing = response.headers.get("vary")
        if existing:
            values = [v.strip() for v in existing.split(",")]
            if vary not in values:
                response.headers["Vary"] = f"{existing}, {vary}"
        else:
            response.headers["Vary"] = vary
        return response
