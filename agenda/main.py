import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from agenda.core import config
from agenda.database import Base, SessionLocal, engine, ensure_appointment_schema, ensure_notification_schema
from agenda.models import agent, appointment, calendar_exception, client, location, notification, service  # noqa: F401
from agenda.notifications.delivery_queue import DeliveryQueue
from agenda.notifications.dispatcher import NotificationDispatcher
from agenda.notifications.gateway import build_gateway
from agenda.routes import appointment_routes, availability_routes, notification_routes

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_notification_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('startup')
async def start_notifications() -> None:
    config.validate_runtime_config()

    queue = DeliveryQueue(
        build_gateway(),
        pacing=config.pacing_bounds(),
        send_timeout=config.NOTIFICATION_SEND_TIMEOUT_SECONDS,
        maxsize=config.NOTIFICATION_QUEUE_MAXSIZE,
    )
    await queue.start()

    app.state.dispatcher = NotificationDispatcher(
        SessionLocal,
        queue,
        enabled=config.NOTIFICATIONS_ENABLED,
        max_attempts=config.NOTIFICATION_MAX_ATTEMPTS,
    )
    logger.info(
        'Notification queue started (enabled=%s, simulated=%s)',
        config.NOTIFICATIONS_ENABLED,
        config.NOTIFICATIONS_SIMULATED,
    )


@app.on_event('shutdown')
async def stop_notifications() -> None:
    dispatcher = getattr(app.state, 'dispatcher', None)
    if dispatcher is None:
        return

    await dispatcher.queue.stop()
    await dispatcher.queue.gateway.aclose()


@app.get('/')
def root():
    return {'status': 'Agenda API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(notification_routes.router, prefix='/notifications')
