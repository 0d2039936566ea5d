from .core import Database, open_database, query
