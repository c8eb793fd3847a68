from .sqlite import SQLiteStorage

__all__ = ["SQLiteStorage"]
