"""
Custom exception hierarchy for the duplicate finder.

Per-file errors (TraversalError, FileHashError, DecodeError) are recovered
where they happen and recorded in the scan summary. StoreError and
ConfigurationError propagate to the top level and end the run.
"""


class DupeFinderError(Exception):
    """Base exception for all duplicate finder errors."""
    pass


class TraversalError(DupeFinderError):
    """Raised when a directory entry cannot be listed or stat'ed."""
    pass


class FileHashError(DupeFinderError):
    """Raised when a file cannot be read for hashing."""
    pass


class DecodeError(DupeFinderError):
    """Raised when a file cannot be decoded as video."""
    pass


class StoreError(DupeFinderError):
    """Raised when the fingerprint database cannot be read or committed."""
    pass


class ConfigurationError(DupeFinderError):
    """Raised for invalid option combinations, before any scan work starts."""
    pass


class FileOperationError(DupeFinderError):
    """Raised when a delete/rename mutation cannot be applied."""
    pass


class ScanCancelled(DupeFinderError):
    """Raised when a running scan is cancelled."""
    pass
