from .records import SqliteRecordStore

__all__ = ["SqliteRecordStore"]
