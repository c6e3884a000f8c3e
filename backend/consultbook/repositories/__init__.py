from .factory import RepositoryFactory

__all__ = ["RepositoryFactory"]
