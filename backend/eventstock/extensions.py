# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()
migrate = Migrate()


def install_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy own transaction boundaries on pysqlite connections.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT / ROLLBACK TO used by checkout completion. The driver is put
    in autocommit mode and BEGIN is emitted explicitly instead.

    An in-memory database shares one connection between sessions, so BEGIN
    is skipped when that connection already has a transaction open.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if not conn.connection.dbapi_connection.in_transaction:
            conn.exec_driver_sql("BEGIN")
