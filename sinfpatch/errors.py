"""Error taxonomy for sinf injection."""

from __future__ import annotations


class SinfPatchError(Exception):
    """Root of every error raised by sinfpatch."""

    retryable = False


class PlistError(SinfPatchError, ValueError):
    pass


class UnrecognizedFormat(PlistError):
    """Buffer is neither a binary nor an XML property list."""


class MalformedData(PlistError):
    """Buffer was recognised but is structurally invalid."""


class UnrepresentableValue(PlistError):
    """Value cannot be expressed in the binary property list format."""


class ArchiveError(SinfPatchError):
    pass


class EntryNotFound(ArchiveError):
    def __init__(self, entry_path: str) -> None:
        super().__init__(f"entry not found in archive: {entry_path}")
        self.entry_path = entry_path


class UnsafePath(ArchiveError):
    def __init__(self, entry_path: str, reason: str) -> None:
        super().__init__(f"unsafe entry path {entry_path!r}: {reason}")
        self.entry_path = entry_path
        self.reason = reason


class ArchiveToolFailure(ArchiveError):
    """The underlying list/extract/update call reported failure."""

    retryable = True

    def __init__(self, operation: str, detail: str = "", returncode: int | None = None) -> None:
        message = f"archive {operation} failed"
        if returncode is not None:
            message += f" (exit code {returncode})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.operation = operation
        self.detail = detail
        self.returncode = returncode


class BundleError(SinfPatchError):
    pass


class BundleNotFound(BundleError):
    """No `<Name>.app/Info.plist` entry outside a Watch subtree."""


class LocatorFailed(BundleError):
    """Neither the sinf manifest nor the bundle Info.plist yielded usable data."""
