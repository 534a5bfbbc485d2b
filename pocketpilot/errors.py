# pocketpilot/errors.py
# Every handler raises one of these; the web layer turns them into {"error": msg}.


class FunctionError(Exception):
    status = 500

    def __init__(self, message: str = "Unknown error", status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(FunctionError):
    status = 400


class AuthError(FunctionError):
    status = 401


class NotFoundError(FunctionError):
    status = 404


class UpstreamError(FunctionError):
    status = 502


class RateLimitedError(UpstreamError):
    status = 429


class CircuitOpenError(UpstreamError):
    status = 503


class ConfigError(FunctionError):
    status = 500


class StoreError(FunctionError):
    status = 500
