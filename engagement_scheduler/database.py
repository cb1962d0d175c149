from datetime import datetime
from threading import Lock

import pytz
from sqlalchemy import DateTime, create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from engagement_scheduler.core import config


def _engine_options(url: str) -> dict:
    options = {"echo": config.DATABASE_ECHO}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    return options


def _disable_pysqlite_begin(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


def _begin_immediate(connection) -> None:
    connection.exec_driver_sql("BEGIN IMMEDIATE")


def enable_sqlite_write_lock(bind: Engine) -> None:
    """Make every SQLite transaction take the database write lock when it begins.

    SQLite has no row locks and pysqlite defers BEGIN until the first write, so
    without this two transactions can both pass a check before either inserts.
    """
    event.listen(bind, "connect", _disable_pysqlite_begin)
    event.listen(bind, "begin", _begin_immediate)


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))
if engine.dialect.name == "sqlite":
    enable_sqlite_write_lock(engine)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores instants as naive UTC and hands them back timezone-aware."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored as instants.")
        return value.astimezone(pytz.UTC).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return pytz.UTC.localize(value)
        return value.astimezone(pytz.UTC)


_schema_lock = Lock()
_scheduling_schema_checked = False


def ensure_scheduling_schema(bind: Engine | None = None) -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)
        table_names = set(inspector.get_table_names())
        migration_steps = []
        index_statements = []

        if 'availability' in table_names:
            existing_columns = {column['name'] for column in inspector.get_columns('availability')}
            migration_steps.extend(
                statement
                for column_name, statement in [
                    ('recurrence_pattern', 'ALTER TABLE availability ADD COLUMN recurrence_pattern VARCHAR'),
                    ('day_of_month', 'ALTER TABLE availability ADD COLUMN day_of_month INTEGER'),
                    ('buffer_minutes', 'ALTER TABLE availability ADD COLUMN buffer_minutes INTEGER NOT NULL DEFAULT 0'),
                ]
                if column_name not in existing_columns
            )
            index_statements.extend([
                'CREATE INDEX IF NOT EXISTS idx_availability_owner_status ON availability(owner_id, status)',
                'CREATE INDEX IF NOT EXISTS idx_availability_date_range ON availability(start_date, end_date)',
            ])
        if 'bookings' in table_names:
            index_statements.extend([
                'CREATE INDEX IF NOT EXISTS idx_bookings_availability_time ON bookings(availability_id, start_time, end_time)',
                'CREATE INDEX IF NOT EXISTS idx_bookings_booked_by_status ON bookings(booked_by, status)',
            ])

        with bind.begin() as connection:
            for statement in migration_steps + index_statements:
                connection.execute(text(statement))

        _scheduling_schema_checked = True
