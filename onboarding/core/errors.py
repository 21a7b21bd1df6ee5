"""
Domain error taxonomy.

Every failure surfaced to a client carries a stable ``code`` and a human
``message``; the app-level handler in ``onboarding.main`` renders them as
``{"success": false, "code": ..., "message": ...}``.
"""

from typing import Any, Dict, Optional


class OnboardingError(Exception):
    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(OnboardingError):
    status_code = 400


class AuthorizationFailed(OnboardingError):
    status_code = 403


class NotFound(OnboardingError):
    status_code = 404


class Conflict(OnboardingError):
    status_code = 409


class DependencyFailed(OnboardingError):
    status_code = 502


class ConsistencyFailed(OnboardingError):
    status_code = 500


class RateLimited(OnboardingError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(
            "rate_limited",
            message,
            details={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after
