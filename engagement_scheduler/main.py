import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from engagement_scheduler.core import config
from engagement_scheduler.database import Base, engine, ensure_scheduling_schema
from engagement_scheduler.models import availability, booking  # noqa: F401
from engagement_scheduler.routes import scheduling_routes
from engagement_scheduler.scheduling.service import build_default_service

logging.getLogger('engagement_scheduler').setLevel(config.LOG_LEVEL)

app = FastAPI(title='Engagement Scheduler')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

app.state.scheduler = build_default_service()


@app.on_event('startup')
def initialize_scheduler() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    app.state.scheduler.start()


@app.on_event('shutdown')
def shutdown_scheduler() -> None:
    app.state.scheduler.stop()


@app.get('/')
def root():
    return {'status': 'Engagement Scheduler API Running', 'scheduler_running': app.state.scheduler.is_running}


app.include_router(scheduling_routes.router)
