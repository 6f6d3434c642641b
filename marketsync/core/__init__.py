from .config import settings, get_settings
from .database import engine, SessionLocal, get_db, init_db, session_scope, Base

__all__ = ["settings", "get_settings", "engine", "SessionLocal", "get_db", "init_db", "session_scope", "Base"]
