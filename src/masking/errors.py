"""
Exceptions raised by the masking engine.

Every error is fatal for the run: the engine re-raises it after tagging
the table/column being processed, and the transaction rolls back.
"""


class MaskingError(Exception):
    """Base exception for masking failures."""

    def __init__(self, message: str, table: str | None = None, column: str | None = None):
        super().__init__(message)
        self.table = table
        self.column = column

    def locate(self, table: str, column: str | None = None) -> "MaskingError":
        """Attach the table/column being processed, keeping any set earlier."""
        if self.table is None:
            self.table = table
        if self.column is None:
            self.column = column
        return self

    @property
    def location(self) -> str | None:
        if self.table is None:
            return None
        return f"{self.table}.{self.column}" if self.column else self.table

    def __str__(self) -> str:
        message = super().__str__()
        location = self.location
        return f"{location}: {message}" if location else message


class ConfigurationError(MaskingError):
    """Rule registry is invalid or references tables/columns the store lacks."""

    pass


class StoreReadError(MaskingError):
    """Loading rows, identities or schema information failed."""

    pass


class StoreWriteError(MaskingError):
    """Executing a batch update failed."""

    pass


class GeneratorError(MaskingError):
    """A column's value generator raised."""

    pass


class MaskingTimeoutError(MaskingError, TimeoutError):
    """The masking transaction exceeded its time budget."""

    pass
