"""
Dashboard Authentication

HTTP basic auth against the single username/password in DashboardConfig.
"""

from __future__ import annotations

import base64
import binascii
import hmac
from typing import Optional

from requestiq.core.config import DashboardConfig
from requestiq.observability.logging import StructuredLogger

logger = StructuredLogger("requestiq.api.auth")

REALM = "RequestIQ Dashboard"


class BasicAuthenticator:
    """
    Validates `Authorization: Basic base64(user:pass)` headers.

    - auth disabled: every request passes
    - auth enabled without a username: every request fails
    - comparison is constant-time on both fields
    """

    __slots__ = ("_config",)

    def __init__(self, config: DashboardConfig) -> None:
        self._config = config
        if config.enable_auth and not config.auth_configured:
            logger.warning("dashboard auth enabled without a username; all requests rejected")

    @property
    def challenge(self) -> str:
        return f'Basic realm="{REALM}"'

    def is_valid(self, header: Optional[str]) -> bool:
        if not self._config.enable_auth:
            return True
        if not self._config.auth_configured or not header:
            return False

        scheme, _, encoded = header.strip().partition(" ")
        if scheme.lower() != "basic" or not encoded:
            return False
        try:
            decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return False

        username, sep, password = decoded.partition(":")
        if not sep:
            return False
        user_ok = hmac.compare_digest(
            username.encode(), (self._config.username or "").encode()
        )
        pass_ok = hmac.compare_digest(
            password.encode(), (self._config.password or "").encode()
        )
        return user_ok and pass_ok
