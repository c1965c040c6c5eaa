"""
Game persistence: sponsors and their token balances, callers, one attempt
row per call and the winners created at settlement.

Two interchangeable stores implement BaseGameStore:
  SqlGameStore        PostgreSQL or SQLite through SQLAlchemy async
  InMemoryGameStore   dicts, for local runs and tests

    from database import create_store
    store = create_store({"store_backend": "sql"})
    sponsor = await store.get_random_sponsor()
"""
from database.models import Base, SponsorRow, UserRow, AttemptRow, WinnerRow
from database.session import get_engine, get_session, init_db, close_db
from database.store_base import BaseGameStore, clamp_challenge_time
from database.store import SqlGameStore
from database.store_memory import InMemoryGameStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    "Base", "SponsorRow", "UserRow", "AttemptRow", "WinnerRow",
    "get_engine", "get_session", "init_db", "close_db",
    "BaseGameStore", "clamp_challenge_time",
    "SqlGameStore", "InMemoryGameStore",
    "create_store", "get_store", "reset_store",
]
