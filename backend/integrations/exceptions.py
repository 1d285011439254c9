"""Typed exception hierarchy for directory gateway errors.

Provides structured exceptions for differentiated error handling
(unreachable/bind failures vs failed operations vs upstream fetch errors).
"""


class DirectoryError(Exception):
    """Base exception for all directory-gateway errors.

    Carries the directory name so callers can identify which side failed.
    """

    def __init__(self, message: str, directory_name: str = ""):
        self.directory_name = directory_name
        super().__init__(message)


class DirectoryConnectionError(DirectoryError):
    """Target directory unreachable, timed out, or bind rejected.

    Fatal to a sync cycle; the next cycle reconnects.
    """

    pass


class DirectoryOperationError(DirectoryError):
    """A single add/modify/delete/search against the target directory failed."""

    def __init__(
        self,
        message: str,
        directory_name: str = "",
        result_code: int | None = None,
    ):
        self.result_code = result_code
        super().__init__(message, directory_name)

    @property
    def entry_already_exists(self) -> bool:
        """LDAP result 68 (entryAlreadyExists)."""
        return self.result_code == 68

    @property
    def no_such_object(self) -> bool:
        """LDAP result 32 (noSuchObject)."""
        return self.result_code == 32


class UpstreamFetchError(DirectoryError):
    """The source directory could not be read (network failure or non-2xx)."""

    def __init__(
        self,
        message: str,
        directory_name: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, directory_name)


class UpstreamAuthError(UpstreamFetchError):
    """Source directory rejected the API token (HTTP 401/403)."""

    pass
