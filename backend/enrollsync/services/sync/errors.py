"""
Exceptions raised by the sync engine.

Row-scope constraint and data violations are not wrapped: they surface as
``sqlalchemy.exc.IntegrityError`` / ``DataError`` and are handled where the
row is written.
"""


class SyncError(Exception):
    """Base class for sync engine failures."""


class RemoteConnectionError(SyncError):
    """The remote database could not be reached."""


class SchemaIntrospectionError(SyncError):
    """A table's sync metadata could not be derived (usually no primary key)."""

    def __init__(self, table_name: str, reason: str):
        self.table_name = table_name
        self.reason = reason
        super().__init__(f"Cannot introspect {table_name}: {reason}")


class BatchMergeError(SyncError):
    """A merge chunk failed for a reason other than a row constraint."""

    def __init__(self, table_name: str, row_count: int, cause: Exception):
        self.table_name = table_name
        self.row_count = row_count
        self.cause = cause
        super().__init__(f"Merge of {row_count} rows into {table_name} failed: {cause}")
