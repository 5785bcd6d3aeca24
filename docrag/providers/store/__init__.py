"""Dataset store implementations.

SQLiteDatasetStore keeps datasets, chunk text and chunk vectors in one
SQLite file (DATABASE_PATH, default: data/knowledge.sqlite).

To swap SQLite for another relational backend, create a new class
implementing IDatasetStore and wire it in docrag/main.py.
"""

from docrag.providers.store.sqlite_dataset_store import SQLiteDatasetStore

__all__ = ["SQLiteDatasetStore"]
