"""Exceptions raised while issuing, recording and rendering codes."""


class Error(Exception):
    """Base class for exceptions in this package."""
    pass


class CollisionError(Error):
    """The code is already present in the ledger."""

    def __init__(self, code: str):
        super().__init__(f"Code already exists in the ledger: {code}")
        self.code = code


class AlreadyRecordedError(Error):
    """A manually supplied code was already known to the ledger."""

    def __init__(self, code: str):
        super().__init__(f"Code already recorded: {code}")
        self.code = code


class StorageError(Error):
    """The ledger storage failed for a reason other than a collision."""
    pass


class RandomSourceError(Error):
    """The operating system entropy source is unavailable."""
    pass


class ExhaustedSpaceError(Error):
    """The retry ceiling or the fill-ratio ceiling of the code space was hit."""
    pass


class RenderError(Error):
    """A QR symbol could not be produced for a code."""
    pass
