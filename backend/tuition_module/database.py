import os
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker


DB_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "tuition_centers.db")
DATABASE_URL = os.getenv("TUITION_DATABASE_URL", f"sqlite:///{DB_PATH}")


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def enable_sqlite_foreign_keys(target: Engine) -> None:
    # SQLite ignores ON DELETE CASCADE unless every connection opts in.
    if target.dialect.name == "sqlite":
        event.listen(target, "connect", _set_sqlite_pragma)


_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, future=True, connect_args=_connect_args)
enable_sqlite_foreign_keys(engine)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def get_db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
