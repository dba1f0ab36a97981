"""Exceptions raised by the Zotero library client and sync engine."""

from typing import Optional


class LibraryRequestError(Exception):
    """A read request to the Zotero API returned a non-ok response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BatchWriteError(LibraryRequestError):
    """The server rejected a whole batch write (e.g. 412 Precondition Failed)."""


class UploadError(Exception):
    """A file upload step did not complete successfully."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
