"""Exception hierarchy for the install pipeline."""

from __future__ import annotations


class InstallerError(Exception):
    """Base class for all installer failures."""


class DownloadError(InstallerError):
    """Raised when an HTTP transfer fails.

    Attributes:
        url: URL being fetched
        status_code: HTTP status when the server answered
    """

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class PatchToolError(InstallerError):
    """Raised when the patch tool is missing, fails to spawn or fails.

    Attributes:
        exit_code: Process exit code, if the tool ran
        stderr: Captured standard error output
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class IntegrityError(InstallerError):
    """Raised when downloaded content fails hash verification.

    Attributes:
        expected: Expected hash as hex string
        actual: Actual hash as hex string
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        actual: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class RuntimeInstallError(InstallerError):
    """Raised when the managed Java runtime cannot be installed."""


class FilesystemError(InstallerError):
    """Raised when a directory move or creation fails."""
