"""Database package"""
from gorepair.db.session import get_db, engine, SessionLocal
from gorepair.models.base import Base

__all__ = ["get_db", "engine", "SessionLocal", "Base"]
