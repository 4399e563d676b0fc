from fastapi import HTTPException


class ConfigError(Exception):
    """Base class for failures reading or writing the persisted config."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class ConfigIOError(ConfigError):
    pass


class ConfigParseError(ConfigError):
    pass


class MissingParametersError(HTTPException):
    def __init__(self):
        super().__init__(status_code=400, detail="Missing parameters")


class InvalidCredentialsError(HTTPException):
    # Same status and detail for unknown users and wrong passwords.
    def __init__(self):
        super().__init__(status_code=403, detail="Invalid credentials")


class UpstreamConnectError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=502, detail=f"Upstream error: {detail}")
