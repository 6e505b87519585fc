"""Custom exceptions for the test server."""


class HttpTestServerError(Exception):
    """Base class for test server exceptions with HTTP status code.

    Errors that are recovered per request carry the status code that the
    client under test receives.
    """
    status_code: int = 500

    def __init__(self, message: str = "Test server error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(HttpTestServerError):
    """Raised when rate limit, latency or expression parameters are invalid.

    Fatal at startup: the process does not start.
    """


class ExpressionCompileError(HttpTestServerError):
    """Raised when an expression cannot be parsed or calls an unknown function."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"could not use expression {expression!r}: {reason}")


class ExpressionEvalError(HttpTestServerError):
    """Raised when evaluating an expression fails for a single request.

    Unknown variables, wrong function arity or argument type, and results of
    the wrong type all end up here. The request is answered with a 500.
    """
    status_code = 500


class BodyReadError(HttpTestServerError):
    """Raised when the request body cannot be read or decoded.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, detail: str = "can't read body"):
        self.detail = detail
        super().__init__(detail)


class HijackUnsupportedError(HttpTestServerError):
    """Raised when the transport cannot hand over its connection for closing.

    This only happens when the app runs on a server that does not provide the
    connection hijack extension, which is a wiring mistake rather than a
    client-visible condition.
    """


class ShutdownTimeout(HttpTestServerError):
    """In-flight requests did not finish before the shutdown deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"could not gracefully shutdown the server within {timeout:g}s"
        )
