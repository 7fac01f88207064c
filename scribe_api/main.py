import logging

from fastapi import FastAPI
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from scribe_api.api.transcriptions import router as transcriptions_router
from scribe_api.core.logging import configure_logging
from scribe_api.db.session import get_db

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="Scribe Transcription API", version="0.1.0")
app.include_router(transcriptions_router)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    db_ok = False
    db: Session | None = None
    try:
        db = next(get_db())
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        log.warning("health check: database unavailable: %s", e)
    finally:
        if db is not None:
            db.close()

    return HealthResponse(ok=True, service="api", version=app.version, db_ok=db_ok)
