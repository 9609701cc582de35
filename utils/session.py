from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def is_in_memory_sqlite(database_uri: str) -> bool:
    url = make_url(database_uri)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_ledger_engine(database_uri: str) -> Engine:
    if is_in_memory_sqlite(database_uri):
        # One shared connection, otherwise every thread sees its own empty database
        return create_engine(
            database_uri,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    engine = create_engine(database_uri)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            # WAL lets point reads run while the single writer holds a transaction
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
