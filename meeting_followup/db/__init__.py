"""
Database package - engine and session management.
"""
from meeting_followup.db.engine import build_engine
from meeting_followup.db.session import Database

__all__ = [
    'build_engine',
    'Database',
]
