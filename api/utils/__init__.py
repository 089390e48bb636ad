# Client Intelligence API Utilities
"""
Shared utility functions for the client intelligence services.
"""

from api.utils.datetime_utils import make_aware, parse_timestamp
from api.utils.db_paths import get_crm_db_path
from api.utils.security import constant_time_equal, bearer_token

__all__ = ["make_aware", "parse_timestamp", "get_crm_db_path", "constant_time_equal", "bearer_token"]
