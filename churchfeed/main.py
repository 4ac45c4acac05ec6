"""ChurchFeed – FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from churchfeed.config import get_settings
from churchfeed.database import Base, engine
# Import models so Base.metadata has all tables before create_all
from churchfeed.models import (  # noqa: F401
    User, Church, Admin, Member, Subscription, Post, Reaction, DeviceStorageEntry, AuditLog,
)
from churchfeed.routers import auth, members, churches, posts, registration, payments

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(members.router)
app.include_router(churches.router)
app.include_router(posts.router)
app.include_router(registration.router)
app.include_router(payments.router)


@app.on_event("startup")
def startup():
    log = logging.getLogger("uvicorn.error")
    if settings.mailgun_api_key and settings.mailgun_domain:
        log.info("[Mailgun] App using domain=%s from=%s", settings.mailgun_domain, settings.mailgun_from_email or "(none)")
    else:
        log.info("[Mailgun] Not configured - emails will use SendGrid if set, otherwise be skipped")
    if not settings.stripe_secret_key and settings.payment_gateway == "stripe":
        log.warning("[Stripe] STRIPE_SECRET_KEY is not set; checkout and payment verification will fail")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        log.warning("Database startup failed (tables skipped). Check DATABASE_URL and network. Error: %s", e)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
