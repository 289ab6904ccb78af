"""
API module: router, dashboard, authentication and request middleware.
"""

from requestiq.api.router import HttpMethod, Request, Response, Route, RequestIQRouter
from requestiq.api.auth import BasicAuthenticator
from requestiq.api.dashboard import DashboardHandler
from requestiq.api.middleware import RequestIQMiddleware

__all__ = [
    "HttpMethod",
    "Request",
    "Response",
    "Route",
    "RequestIQRouter",
    "BasicAuthenticator",
    "DashboardHandler",
    "RequestIQMiddleware",
]
