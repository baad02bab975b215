import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardroom.database import init_db
from cardroom.routes import tables, waitlist
from cardroom.services.expiry_scheduler import WaitlistExpiryScheduler

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Card Room Waitlist API")

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(waitlist.router, prefix="/api", tags=["waitlist"])
app.include_router(tables.router, prefix="/api", tags=["tables"])

# Created eagerly so routes can reach it even when startup hooks are skipped
app.state.expiry_scheduler = WaitlistExpiryScheduler()


@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("Card room waitlist API started")


@app.on_event("shutdown")
def on_shutdown():
    app.state.expiry_scheduler.shutdown()


@app.get("/api/health")
def health_check():
    return {"app_name": "Card Room Waitlist API", "status": "healthy"}
