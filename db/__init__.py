"""Database package for the CRM association store."""
from db.connection import configure, dispose_engine, get_db, get_engine, get_session_factory

__all__ = ["configure", "get_engine", "get_session_factory", "get_db", "dispose_engine"]
