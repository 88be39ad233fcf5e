"""Exception types raised by the query engine."""

from .config import ConfigurationError


class ParseError(ValueError):
    """Raised when a tag/category boolean expression is malformed."""

    def __init__(self, message: str, expression: str = "", position: int | None = None):
        super().__init__(message)
        self.expression = expression
        self.position = position


class StorageError(Exception):
    """Raised by store implementations when a read fails."""

    pass


class InvalidSorterError(ConfigurationError):
    """Raised for a sorter name the pipeline does not know."""

    def __init__(self, sorter: str):
        super().__init__(f"Invalid sorter: {sorter}")
        self.sorter = sorter
