"""
Error taxonomy shared by the broker, the refresher and the proxy.

Each error carries a stable code so the UI can tell "connect your Drive"
(NOT_CONNECTED) apart from "try again" (TOKEN_EXPIRED) and generic failures.
main.py renders them as {"error": message, "code": code}.
"""


class DriveError(Exception):
    """Base class; subclasses set code and status_code."""

    code = "INTERNAL"
    status_code = 500

    def __init__(self, msg: str, status_code: int | None = None):
        self.msg = msg
        if status_code is not None:
            self.status_code = status_code
        super().__init__(msg)


class Unauthenticated(DriveError):
    code = "UNAUTHENTICATED"
    status_code = 401


class InvalidArgument(DriveError):
    code = "INVALID_ARGUMENT"
    status_code = 400


class NotConnected(DriveError):
    code = "NOT_CONNECTED"
    status_code = 401

    def __init__(self, msg: str = "Google Drive not connected or token expired"):
        super().__init__(msg)


class TokenExpired(DriveError):
    """Google rejected an access token that was believed valid; retry once."""

    code = "TOKEN_EXPIRED"
    status_code = 401

    def __init__(self, msg: str = "Token expired"):
        super().__init__(msg)


class ExternalAuthFailure(DriveError):
    code = "EXTERNAL_AUTH_FAILURE"
    status_code = 400


class ExternalApiFailure(DriveError):
    code = "EXTERNAL_API_FAILURE"
    status_code = 502


class StorageFailure(DriveError):
    code = "STORAGE_FAILURE"
    status_code = 500
