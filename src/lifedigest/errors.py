"""Exception hierarchy shared by the digest pipeline, stores and vendor clients.

Digester failures are recorded on their digest record and never escape the
coordinator. `DependencyNotReady` is the one failure that is expected to heal by
itself on a later pass, so callers can branch on `is_retryable` instead of
matching error strings.
"""

from __future__ import annotations


class LifeDigestError(Exception):
    """Base exception for lifedigest."""

    retryable: bool = False


class DigestError(LifeDigestError):
    """A digester could not produce its output for a file."""

    def __init__(self, message: str, *, digester: str | None = None, file_path: str | None = None) -> None:
        self.digester = digester
        self.file_path = file_path
        super().__init__(message)


class DependencyNotReady(DigestError):
    """An upstream digest this digester reads from is not completed yet."""

    retryable = True

    def __init__(self, digester: str, dependency: str, file_path: str | None = None) -> None:
        self.dependency = dependency
        super().__init__(
            f"{dependency} not completed yet",
            digester=digester,
            file_path=file_path,
        )


class UnsupportedFileError(DigestError):
    """The file type cannot be handled by this digester."""


class VendorError(LifeDigestError):
    """An external service call failed."""

    def __init__(self, vendor: str, message: str, *, status_code: int | None = None) -> None:
        self.vendor = vendor
        self.status_code = status_code
        prefix = f"{vendor} error"
        if status_code is not None:
            prefix = f"{vendor} error {status_code}"
        super().__init__(f"{prefix}: {message}")


class VendorNotConfigured(VendorError):
    """The service has no base URL configured."""

    def __init__(self, vendor: str) -> None:
        super().__init__(vendor, "not configured")


class StoreError(LifeDigestError):
    """The digest store could not be opened or queried."""


def is_retryable(exc: BaseException) -> bool:
    """Return True when the failure is expected to resolve on a later pass."""
    return bool(getattr(exc, "retryable", False))
