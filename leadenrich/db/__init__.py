from leadenrich.db.base import Base
from leadenrich.db.session import get_session, get_session_factory, transaction_session

__all__ = ["Base", "get_session", "get_session_factory", "transaction_session"]
