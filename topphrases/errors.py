"""
Errors and warnings raised while counting phrases.
"""


class TopPhrasesError(Exception):
    pass


class StorageIOError(TopPhrasesError, OSError):
    """A filesystem operation on the working area failed. Aborts the run."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class DigestCollisionError(TopPhrasesError):
    """Two different phrases produced the same fingerprint."""

    def __init__(self, message: str, stored_path=None):
        super().__init__(message)
        self.stored_path = stored_path


class InvalidArgumentError(TopPhrasesError, ValueError):
    pass


class StaleWorkingAreaWarning(UserWarning):
    """A working area left behind by an earlier, abnormally terminated run was found."""
