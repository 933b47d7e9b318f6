from .config import StorageConfig, load_config
from .files import FileRepository
from .persistence import PersistenceManager, build_repository

__all__ = ["FileRepository", "PersistenceManager", "StorageConfig", "build_repository", "load_config"]
