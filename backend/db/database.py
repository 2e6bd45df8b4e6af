from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings


_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)


def set_sqlite_pragma(dbapi_connection, connection_record):
    _ = connection_record
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# WAL for concurrent readers, foreign keys for progress cascades
if _is_sqlite:
    event.listen(engine, "connect", set_sqlite_pragma)


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_startup_migrations() -> None:
    """Apply lightweight schema fixes for existing SQLite databases."""
    inspector = inspect(engine)

    def _table_columns(table_name: str) -> set[str]:
        try:
            return {col["name"] for col in inspector.get_columns(table_name)}
        except Exception:
            return set()

    user_columns = _table_columns("users")
    progress_columns = _table_columns("progress")
    if not user_columns and not progress_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if user_columns:
        if "email_verified" not in user_columns:
            alter_statements.append("ALTER TABLE users ADD COLUMN email_verified BOOLEAN DEFAULT 0")
        if "verify_token" not in user_columns:
            alter_statements.append("ALTER TABLE users ADD COLUMN verify_token TEXT")
        if "verify_token_expires_at" not in user_columns:
            alter_statements.append("ALTER TABLE users ADD COLUMN verify_token_expires_at DATETIME")
    if progress_columns:
        # Older databases were created before the (habit, date) constraint existed.
        alter_statements.append(
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_progress_habit_date ON progress (habit_id, date)"
        )

    if not alter_statements:
        return
    with engine.begin() as conn:
        for statement in alter_statements:
            conn.execute(text(statement))
