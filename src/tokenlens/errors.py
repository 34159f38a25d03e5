class TokenlensError(Exception):
    """
    base class for every error raised by tokenlens.
    """


class InvalidInputError(TokenlensError):
    """
    raised when an input container is structurally invalid, e.g. a
    payload that is not a mapping or a record list that is not a list.
    This is the only aggregation failure surfaced to callers.
    """


class InvalidTimestampError(TokenlensError):
    pass


class RecordValidationError(TokenlensError):
    """
    raised when a single raw record cannot be normalized. Batch
    operations catch it and skip the record.
    """

    def __init__(self, reason: "str", index: "int | None" = None) -> "None":
        super().__init__(reason)
        self.reason = reason
        self.index = index


class SourceError(TokenlensError):
    """
    raised when the external usage source fails: missing binary,
    non-zero exit, timeout or unparseable output.
    """
