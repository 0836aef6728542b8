# app/db/session.py
from app.db.database import get_db

__all__ = ["get_db"]
