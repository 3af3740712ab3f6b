"""API error taxonomy.

Raised by services and blueprints, rendered as ``{"error": message}`` by
the handler registered in create_app().
"""


class ApiError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ApiError):
    """Missing or malformed input. No side effects have happened."""

    status_code = 400


class AuthenticationError(ApiError):
    status_code = 401


class NotConfiguredError(ApiError):
    """A provider secret is absent; the endpoint fails closed."""

    status_code = 500


class UpstreamError(ApiError):
    """Payment or email provider call failed. Carries the provider's message."""

    status_code = 502
