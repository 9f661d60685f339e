from typing import Any, Optional


class ServiceError(Exception):
    """Base for every error the HTTP layer turns into a JSON error body."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def extra(self, expose_details: bool = False) -> dict[str, Any]:
        return {}


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, message: str, fields: Optional[list[dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.fields = fields or []

    def extra(self, expose_details: bool = False) -> dict[str, Any]:
        if not self.fields:
            return {}
        return {"fields": self.fields}


class AuthError(ServiceError):
    status_code = 401


class NotFoundError(ServiceError):
    status_code = 404


class UpstreamError(ServiceError):
    """A provider REST call failed or answered with a non-2xx status."""

    status_code = 500

    def __init__(
        self,
        message: str,
        provider_status: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.provider_status = provider_status
        self.payload = payload

    def extra(self, expose_details: bool = False) -> dict[str, Any]:
        if not expose_details or self.payload is None:
            return {}
        return {"details": self.payload}


class ConfigError(ServiceError):
    status_code = 500


class WebhookVerificationError(ServiceError):
    status_code = 400

    def __init__(self, message: str, verification_status: Optional[str] = None) -> None:
        super().__init__(message)
        self.verification_status = verification_status

    @property
    def retryable(self) -> bool:
        # Only a transport/auth failure of the verification call is transient.
        return self.verification_status == "ERROR"

    def extra(self, expose_details: bool = False) -> dict[str, Any]:
        return {"retryable": self.retryable}


class StoreError(ServiceError):
    status_code = 500
