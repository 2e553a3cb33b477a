# farmhub/errors.py


class FarmhubError(Exception):
    """Base class for errors raised by farmhub."""


class DirectoryError(FarmhubError):
    """The farm directory was unreachable or returned a malformed response."""


class FarmNotFound(DirectoryError):
    def __init__(self, farm_id):
        super().__init__(f"Farm not found: {farm_id}")
        self.farm_id = farm_id


class PersistenceError(FarmhubError):
    """The key-value store could not read or write a value."""
