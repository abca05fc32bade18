class DupscanError(Exception):
    """Base class for all dupscan errors."""


class ConfigError(DupscanError):
    """Invalid root path or configuration. Fatal for the whole run."""


class DigestError(DupscanError):
    """A file could not be hashed. The walker skips the file."""


class UnsupportedAlgorithmError(DigestError):
    pass


class AllocationFailureError(DigestError):
    pass


class DigestIOError(DigestError):
    pass


class TableStateError(DupscanError):
    """The fingerprint table was used outside its populate/drain lifecycle."""
