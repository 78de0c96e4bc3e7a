import time
import logging
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from newsroom_admin.config import settings

logger = logging.getLogger(__name__)


def normalize_db_url(db_url: str) -> str:
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    if db_url.startswith("postgresql://") and "+psycopg" not in db_url:
        db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url


def _create_engine_with_retries(db_url: str, retries: int = 3):
    db_url = normalize_db_url(db_url)
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    new_engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)

    backoff = 2
    for attempt in range(retries):
        try:
            with new_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return new_engine
        except Exception as e:
            if attempt < retries - 1:
                logger.warning(f"Database connection failed. Retrying in {backoff}s... ({e})")
                time.sleep(backoff)
                backoff *= 2
            else:
                logger.error("Failed all DB connection attempts.")
                raise


engine = _create_engine_with_retries(settings.database_url)

# WAL keeps the scheduler thread and request threads from tripping "database is locked"
if engine.url.get_backend_name() == "sqlite":
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
