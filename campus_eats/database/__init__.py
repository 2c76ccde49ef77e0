from .database import Database
from .repositories import UnitOfWork

__all__ = ['Database', 'UnitOfWork']
