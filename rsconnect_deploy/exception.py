from __future__ import annotations

from typing import Optional


class RSConnectException(Exception):
    def __init__(self, message: str, cause: Optional[Exception] = None):
        super(RSConnectException, self).__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationException(RSConnectException):
    pass


class LocalInputException(RSConnectException):
    pass


class RemoteCallException(RSConnectException):
    def __init__(self, message: str, cause: Optional[Exception] = None, server_error: Optional[str] = None):
        super(RemoteCallException, self).__init__(message, cause)
        self.server_error = server_error


class MalformedResponseException(RemoteCallException):
    pass


class DeploymentFailedException(RSConnectException):
    pass
