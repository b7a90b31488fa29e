import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlmodel import Session

from .api import auth, roles, user
from .database import create_db_and_tables, engine
from .errors import ApiError, api_error_handler, request_validation_handler, unhandled_error_handler
from .sessions import SessionCleanupService
from .settings import get_settings
from .setup import create_initial_roles_and_permissions

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    create_initial_roles_and_permissions(engine)
    cleanup = SessionCleanupService(
        lambda: Session(engine),
        interval_seconds=settings.session_cleanup_interval_seconds,
    )
    app.state.session_cleanup = cleanup
    cleanup.start()
    yield
    await cleanup.stop()

app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

app.include_router(auth.router)
app.include_router(roles.router)
app.include_router(user.router)

@app.get("/health")
def read_health():
    return {"status": "ok"}

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
