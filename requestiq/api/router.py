"""
HTTP Router: Method-Keyed Routes With Middleware Chains

Each path template owns one binding per HTTP method, and every binding
carries its own middleware. A request runs through

    router middleware (in `use` order) -> binding middleware -> handler

Router middleware wraps route resolution itself, so it also sees requests
that end in 404 or 405. Middleware has the shape

    async def middleware(request: Request, call_next: Handler) -> Response

and may answer on its own instead of calling `call_next`.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import parse_qs, urlsplit

from requestiq.observability.logging import StructuredLogger

logger = StructuredLogger("requestiq.api.router")


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    OPTIONS = "OPTIONS"
    HEAD = "HEAD"

    @classmethod
    def parse(cls, raw: str) -> Optional[HttpMethod]:
        try:
            return cls(raw.upper())
        except ValueError:
            return None


# =============================================================================
# REQUEST / RESPONSE
# =============================================================================
@dataclass(slots=True)
class Request:
    """Inbound request: method, path, decoded query string, lower-cased headers."""

    method: str
    path: str
    query_params: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    path_params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(
        cls,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
    ) -> Request:
        parts = urlsplit(url)
        return cls(
            method=method.upper(),
            path=parts.path or "/",
            query_params=parse_qs(parts.query),
            headers={name.lower(): value for name, value in (headers or {}).items()},
        )

    def query(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter; blank values count as absent."""
        return self.query_params.get(key, [default])[0]

    def header(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(key.lower(), default)


@dataclass(slots=True)
class Response:
    status: int = 200
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def _encoded(
        cls,
        text: str,
        content_type: str,
        status: int,
        headers: Optional[dict[str, str]],
    ) -> Response:
        return cls(
            status=status,
            body=text.encode(),
            headers={**(headers or {}), "content-type": content_type},
        )

    @classmethod
    def json(
        cls,
        data: Any,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        return cls._encoded(json.dumps(data, default=str), "application/json", status, headers)

    @classmethod
    def html(cls, markup: str, status: int = 200) -> Response:
        return cls._encoded(markup, "text/html; charset=utf-8", status, None)

    @classmethod
    def text(
        cls,
        message: str,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        return cls._encoded(message, "text/plain; charset=utf-8", status, headers)

    @classmethod
    def error(
        cls,
        message: str,
        status: int = 400,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        return cls.json({"error": message}, status=status, headers=headers)

    def json_body(self) -> Any:
        return json.loads(self.body) if self.body else None


Handler = Callable[[Request], Awaitable[Response]]
Middleware = Callable[[Request, Handler], Awaitable[Response]]


def chain(middleware: Sequence[Middleware], endpoint: Handler, position: int = 0) -> Handler:
    """
    Handler that runs `middleware[position:]` in order around `endpoint`.

    Links are built lazily, one per `call_next`, so a middleware that
    answers early never builds the rest of the chain.
    """
    async def call_next(request: Request) -> Response:
        if position >= len(middleware):
            return await endpoint(request)
        return await middleware[position](request, chain(middleware, endpoint, position + 1))
    return call_next


# =============================================================================
# ROUTES
# =============================================================================
_PARAM_SEGMENT = re.compile(r"\{(\w+)\}")


def compile_template(template: str) -> re.Pattern[str]:
    """"/items/{item_id}" -> one named group per whole-segment {param}."""
    segments = []
    for segment in template.split("/"):
        param = _PARAM_SEGMENT.fullmatch(segment)
        segments.append(f"(?P<{param.group(1)}>[^/]+)" if param else re.escape(segment))
    return re.compile("/".join(segments))


@dataclass(frozen=True, slots=True)
class MethodBinding:
    handler: Handler
    middleware: tuple[Middleware, ...] = ()

    def as_handler(self) -> Handler:
        return chain(self.middleware, self.handler)


@dataclass(slots=True)
class Route:
    """A path template and its handlers keyed by method."""

    template: str
    pattern: re.Pattern[str]
    bindings: dict[HttpMethod, MethodBinding] = field(default_factory=dict)

    @classmethod
    def for_template(cls, template: str) -> Route:
        return cls(template, compile_template(template))

    def match(self, path: str) -> Optional[dict[str, str]]:
        found = self.pattern.fullmatch(path)
        return None if found is None else found.groupdict()

    def allowed(self) -> list[str]:
        return [method.value for method in self.bindings]


class RequestIQRouter:
    """
    Usage:
        router = RequestIQRouter()
        router.use(RequestIQMiddleware(config, sampler, engine, dashboard))

        @router.get("/api/items/{item_id}", require_token)
        async def get_item(request: Request) -> Response:
            ...

        response = await router.dispatch(Request.from_raw("GET", url, headers))

    Templates are tried in registration order; the first one that matches
    the path and has a binding for the method handles the request.
    """

    __slots__ = ("_routes", "_middleware", "_prefix")

    def __init__(self, prefix: str = "") -> None:
        self._routes: dict[str, Route] = {}
        self._middleware: list[Middleware] = []
        self._prefix = prefix

    def use(self, middleware: Middleware) -> RequestIQRouter:
        """Add router-level middleware; the first added runs outermost."""
        self._middleware.append(middleware)
        return self

    def add(
        self,
        method: str,
        path: str,
        handler: Handler,
        *middleware: Middleware,
    ) -> RequestIQRouter:
        """
        Bind `handler` to `method` on `path`, replacing any earlier binding.

        Raises:
            ValueError: unknown HTTP method.
        """
        template = self._prefix + path
        route = self._routes.get(template)
        if route is None:
            route = self._routes[template] = Route.for_template(template)
        route.bindings[HttpMethod(method.upper())] = MethodBinding(handler, middleware)
        return self

    def route(
        self,
        path: str,
        methods: Sequence[str] = ("GET",),
        middleware: Sequence[Middleware] = (),
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self.add(method, path, handler, *middleware)
            return handler
        return decorator

    def get(self, path: str, *middleware: Middleware) -> Callable[[Handler], Handler]:
        return self.route(path, ("GET",), middleware)

    def post(self, path: str, *middleware: Middleware) -> Callable[[Handler], Handler]:
        return self.route(path, ("POST",), middleware)

    async def dispatch(self, request: Request) -> Response:
        try:
            return await chain(self._middleware, self._resolve)(request)
        except Exception as e:
            logger.exception("request handler failed", method=request.method, path=request.path)
            return Response.error(str(e), status=500)

    async def _resolve(self, request: Request) -> Response:
        method = HttpMethod.parse(request.method)
        allowed: list[str] = []
        for route in self._routes.values():
            params = route.match(request.path)
            if params is None:
                continue
            binding = route.bindings.get(method) if method is not None else None
            if binding is None:
                allowed.extend(m for m in route.allowed() if m not in allowed)
                continue
            request.path_params = params
            return await binding.as_handler()(request)

        if allowed:
            return Response.error(
                f"Method {request.method} not allowed",
                status=405,
                headers={"allow": ", ".join(allowed)},
            )
        return Response.error("Not found", status=404)
