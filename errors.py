"""Exceptions raised by the advisory service, each mapped to one HTTP status."""


class AdvisoryServiceError(Exception):
    status_code = 500
    public_message = "Something went wrong"

    def __init__(self, message: str = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class AuthError(AdvisoryServiceError):
    status_code = 401
    public_message = "Unauthorized"


class InvalidRequest(AdvisoryServiceError):
    status_code = 400
    public_message = "Invalid request"


class FarmNotFound(AdvisoryServiceError):
    status_code = 404
    public_message = "Farm not found"


class RateLimitedError(AdvisoryServiceError):
    status_code = 429
    public_message = "Rate limit exceeded"


class QuotaExceededError(AdvisoryServiceError):
    status_code = 402
    public_message = "Credits exhausted"


class UpstreamError(AdvisoryServiceError):
    status_code = 500
    public_message = "AI gateway error"


class WeatherProviderError(UpstreamError):
    public_message = "Something went wrong"


class ConfigurationError(AdvisoryServiceError):
    status_code = 500
    public_message = "Something went wrong"


class ToolPayloadError(AdvisoryServiceError):
    """The model answered without a usable tool call."""

    status_code = 500
    public_message = "Failed to parse AI response"


def require(value, name: str):
    """Return a configured secret or raise ConfigurationError naming it."""
    if not value:
        raise ConfigurationError(f"{name} is not configured")
    return value
