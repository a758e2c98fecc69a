"""Project error hierarchy."""


class CompatGateError(Exception):
    """Base error."""

    status_code = 500
    code = "internal_error"


class AuthMissingError(CompatGateError):
    """Raised when the Authorization header is absent."""

    status_code = 403
    code = "auth_missing"


class AuthInvalidError(CompatGateError):
    """Raised when the bearer key fails verification."""

    status_code = 403
    code = "auth_invalid"


class MalformedRequestError(CompatGateError):
    """Raised when the request body is not a valid chat-completion request."""

    status_code = 400
    code = "malformed_request"


class MalformedURLError(MalformedRequestError):
    """Raised when an image reference does not parse as a URL."""

    code = "malformed_url"


class InvalidModelError(CompatGateError):
    """Raised when the requested model cannot be resolved."""

    status_code = 400
    code = "invalid_model"


class UnsupportedMessageShapeError(CompatGateError):
    """Raised when a message has no canonical mapping."""

    code = "unsupported_message_shape"


class ProviderError(CompatGateError):
    """Raised when a non-streaming model invocation fails."""

    status_code = 502
    code = "provider_error"
