"""
Database path utilities for the client intelligence services.
"""
from pathlib import Path

from config.settings import settings


def get_crm_db_path() -> str:
    """
    Get the path to the CRM database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Path to the crm.db file
    """
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)
