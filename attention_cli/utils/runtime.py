"""Database wiring for CLI commands"""

from attention.config.settings import get_settings
from attention.infra.database import Database


def open_database() -> Database:
    """Create a database for one command; callers close it when done"""
    return Database(get_settings())
