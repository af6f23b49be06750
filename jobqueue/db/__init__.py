from jobqueue.db.database import Base, get_db, get_session_factory, init_database, close_database

__all__ = [
    'Base',
    'get_db',
    'get_session_factory',
    'init_database',
    'close_database',
]
