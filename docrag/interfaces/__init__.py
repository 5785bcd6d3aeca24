"""Public interface definitions for swappable backends.

The embedding backend and the dataset store are accessed exclusively
through the abstract base classes defined in this package.  Concrete
adapters implement these interfaces and are injected at startup in
``docrag/main.py``, so services never import a concrete backend and unit
tests can inject fakes without network or disk access.

CONCRETE PROVIDER MAP:
    Interface            ->  Concrete implementations (in docrag/providers/)
    ---------------------------------------------------------------------
    IEmbeddingProvider   ->  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IDatasetStore        ->  SQLiteDatasetStore
"""

from docrag.interfaces.dataset_store import IDatasetStore
from docrag.interfaces.embedding_provider import IEmbeddingProvider

__all__ = [
    "IDatasetStore",
    "IEmbeddingProvider",
]
