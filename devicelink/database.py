"""Database connection and initialization."""

from sqlalchemy import event
from sqlmodel import SQLModel, Session, create_engine

from devicelink.config import settings

# Import all models so SQLModel registers them
import devicelink.models  # noqa: F401

# Milliseconds a writer waits for a competing link/exchange to commit
BUSY_TIMEOUT_MS = 5000

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=settings.debug,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def _configure_connection(dbapi_connection, connection_record) -> None:
    """Per-connection pragmas; journal_mode is persisted in the file itself."""
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def init_db() -> None:
    """Create all tables and switch the file to WAL.

    WAL lets exchange polls keep reading while a link or exchange holds the
    write lock for its conditional UPDATE.
    """
    SQLModel.metadata.create_all(engine)

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        conn.commit()


def get_session():
    """FastAPI dependency: yields a database session."""
    with Session(engine) as session:
        yield session
