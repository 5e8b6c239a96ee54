# medstock/db/session.py
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from medstock.core.config import settings


def _enable_sqlite_savepoints(eng: Engine) -> None:
    # pysqlite starts transactions lazily and breaks SAVEPOINT; let
    # SQLAlchemy emit BEGIN itself.
    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(db_uri: str, **kwargs) -> Engine:
    if db_uri.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        eng = create_engine(db_uri, future=True, **kwargs)
        _enable_sqlite_savepoints(eng)
        return eng

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_recycle", 280)
    kwargs.setdefault("pool_size", 10)
    kwargs.setdefault("max_overflow", 20)
    return create_engine(db_uri, future=True, **kwargs)


def make_sessionmaker(eng: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=eng,
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = make_sessionmaker(engine)
