import logging
import os
from datetime import date
from threading import Lock

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agenda.db")

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAME = "appointments_no_overlap"


def create_db_engine(url: str, **kwargs) -> Engine:
    db_engine = create_engine(url, **kwargs)

    if db_engine.dialect.name == "sqlite":
        # pysqlite defers BEGIN until the first write; take the write lock up front
        # so that a booking transaction is serialized against other connections.
        @event.listens_for(db_engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(db_engine, "begin")
        def _begin_immediate(connection):
            connection.exec_driver_sql("BEGIN IMMEDIATE")

    return db_engine


engine = create_db_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_notification_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def lock_schedule(db: Session, agent_id: int, day: date) -> None:
    """Enter the store-level critical section for one agent's day.

    Held until the surrounding transaction commits or rolls back.
    """
    connection = db.connection()

    if connection.dialect.name == "postgresql":
        connection.execute(
            text("SELECT pg_advisory_xact_lock(:agent_id, :day_key)"),
            {"agent_id": int(agent_id), "day_key": day.toordinal()},
        )


def is_overlap_violation(exc: Exception) -> bool:
    return OVERLAP_CONSTRAINT_NAME in str(getattr(exc, "orig", exc))


def ensure_appointment_schema(db_engine: Engine | None = None) -> None:
    global _appointment_schema_checked

    db_engine = db_engine or engine

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(db_engine)

        if "appointments" not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        with db_engine.begin() as connection:
            connection.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_appointments_agent_date "
                    "ON appointments(agent_id, appointment_date)"
                )
            )
            connection.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_appointments_status_date "
                    "ON appointments(status, appointment_date)"
                )
            )

            if connection.dialect.name == "postgresql":
                connection.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
                exists = connection.execute(
                    text("SELECT 1 FROM pg_constraint WHERE conname = :name"),
                    {"name": OVERLAP_CONSTRAINT_NAME},
                ).first()
                if not exists:
                    logger.info("Installing %s exclusion constraint", OVERLAP_CONSTRAINT_NAME)
                    connection.execute(
                        text(
                            f"ALTER TABLE appointments ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
                            "EXCLUDE USING GIST ("
                            "agent_id WITH =, "
                            "tsrange(appointment_date + start_time, appointment_date + end_time, '[)') WITH &&"
                            ") WHERE (status <> 'Cancelled')"
                        )
                    )

        _appointment_schema_checked = True


def ensure_notification_schema(db_engine: Engine | None = None) -> None:
    global _notification_schema_checked

    db_engine = db_engine or engine

    if _notification_schema_checked:
        return

    with _schema_lock:
        if _notification_schema_checked:
            return

        inspector = inspect(db_engine)

        if "notification_records" not in inspector.get_table_names():
            _notification_schema_checked = True
            return

        with db_engine.begin() as connection:
            connection.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_notification_records_lookup "
                    "ON notification_records(appointment_id, kind, status)"
                )
            )
            connection.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_notification_records_status_attempts "
                    "ON notification_records(status, attempts)"
                )
            )

        _notification_schema_checked = True
