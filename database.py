from __future__ import annotations
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config import Settings

logger = logging.getLogger(__name__)


def database_url(settings: Settings) -> URL:
    raw = settings.db_url.strip()
    if raw.startswith("jdbc:"):
        # JDBC query flags (useSSL=false, ...) mean nothing to the Python drivers
        raw = raw[len("jdbc:"):].split("?", 1)[0]
    url = make_url(raw)
    if url.drivername == "mysql":
        url = url.set(drivername="mysql+pymysql")
    if url.get_backend_name() == "sqlite":
        return url
    if url.username is None and settings.db_user:
        url = url.set(username=settings.db_user)
    if url.password is None and settings.db_password:
        url = url.set(password=settings.db_password)
    return url


def _connect_args(url: URL, timeout: int) -> dict:
    backend = url.get_backend_name()
    if backend == "sqlite":
        # check_same_thread=False so Qt threads won't choke.
        return {"check_same_thread": False, "timeout": timeout}
    if backend == "mysql":
        return {"connect_timeout": timeout, "read_timeout": timeout, "write_timeout": timeout}
    return {"connect_timeout": timeout}


def _enable_sqlite_fks(dbapi_conn, _record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def make_engine(settings: Settings):
    url = database_url(settings)
    kw = dict(
        future=True,
        echo=settings.db_echo,
        pool_pre_ping=True,
        connect_args=_connect_args(url, settings.db_timeout),
    )
    sqlite = url.get_backend_name() == "sqlite"
    if sqlite and url.database in (None, "", ":memory:"):
        # one shared connection, otherwise every checkout sees an empty database
        kw["poolclass"] = StaticPool
    elif not sqlite:
        kw.update(pool_size=5, max_overflow=10, pool_recycle=300, pool_timeout=settings.db_timeout)
    engine = create_engine(url, **kw)
    if sqlite:
        event.listen(engine, "connect", _enable_sqlite_fks)
    logger.info("Database engine ready: %s", url.render_as_string(hide_password=True))
    return engine


def make_session_factory(engine):
    # expire_on_commit=False keeps objects usable after commit
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


@contextmanager
def session_scope(session_factory):
    """One session per operation: commit on success, rollback on error, always closed."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine, Base):
    # The production schema is managed outside the app; this only fills in
    # missing tables for local SQLite files and tests.
    Base.metadata.create_all(engine)


def ping(engine) -> bool:
    """Connectivity probe used at startup."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error("Database unreachable: %s", e)
        return False
