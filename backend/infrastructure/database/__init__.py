from .connection import (
    close_db,
    create_engine,
    create_engine_from_settings,
    create_session_maker,
    init_db,
)
from .models import Base

__all__ = [
    "Base",
    "create_engine",
    "create_engine_from_settings",
    "create_session_maker",
    "init_db",
    "close_db",
]
