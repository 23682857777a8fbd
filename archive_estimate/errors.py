"""Error types and process exit codes."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    CLIENT_LIBRARY_UNAVAILABLE = 10
    ENDPOINT_DISCOVERY_FAILED = 11
    MAILBOX_BIND_FAILED = 12
    AUTHENTICATION_FAILED = 13
    SERVICE_REQUEST_FAILED = 14


class EstimatorError(Exception):
    """Base exception for fatal conditions; carries the exit code to report."""

    exit_code: ExitCode = ExitCode.SERVICE_REQUEST_FAILED


class ClientLibraryError(EstimatorError):
    """The Graph client stack (msal/requests) could not be imported."""

    exit_code = ExitCode.CLIENT_LIBRARY_UNAVAILABLE


class DiscoveryError(EstimatorError):
    """The service endpoint for a mailbox could not be resolved."""

    exit_code = ExitCode.ENDPOINT_DISCOVERY_FAILED

    def __init__(self, mailbox: str, reason: str) -> None:
        self.mailbox = mailbox
        self.reason = reason
        super().__init__(f"Endpoint discovery failed for {mailbox}: {reason}")


class AuthenticationError(EstimatorError):
    """No access token could be obtained for the connection."""

    exit_code = ExitCode.AUTHENTICATION_FAILED


class GraphRequestError(EstimatorError):
    """A Graph request failed at the transport or HTTP level."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class MailboxBindError(EstimatorError):
    """The mailbox root folder is not accessible."""

    exit_code = ExitCode.MAILBOX_BIND_FAILED

    def __init__(self, mailbox: str, status_code: int | None = None) -> None:
        self.mailbox = mailbox
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"Unable to bind root folder of {mailbox}{detail}")
