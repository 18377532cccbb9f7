"""Custom middleware helpers for the escrow backend."""

from __future__ import annotations

from typing import Callable


class JWTCSRFBypassMiddleware:
    """Skip CSRF enforcement for requests authenticated with a Bearer token.

    API clients send JWTs in the Authorization header and never rely on
    cookies, so the CSRF check only applies to session-authenticated requests
    (admin, browsable API).
    """

    def __init__(self, get_response: Callable):
        self.get_response = get_response

    def __call__(self, request):
        authorization = request.META.get("HTTP_AUTHORIZATION", "")
        if authorization.lower().startswith("bearer "):
            request._dont_enforce_csrf_checks = True  # type: ignore[attr-defined]
        return self.get_response(request)
