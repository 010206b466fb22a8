from .protocol import Storage
from .sqlalchemy import SqlAlchemyStorage

__all__ = ["Storage", "SqlAlchemyStorage"]
