import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quimita.database import engine, Base
from quimita.errors import SubscriptionError
from quimita.routers import auth, subscription, user

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "https://quimicavestibular.com.br,https://www.quimicavestibular.com.br"
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
    if origin.strip()
]

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="QuimITA",
    description="Accounts and recurring subscriptions for the QuimITA platform",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(SubscriptionError)
async def subscription_error_handler(request: Request, exc: SubscriptionError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app.include_router(auth.router)
app.include_router(user.router)
app.include_router(subscription.router)
app.include_router(subscription.webhook_router)


@app.get("/")
def read_root():
    return {"status": "API online"}


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
