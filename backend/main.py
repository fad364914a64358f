from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import config
from database import engine, Base
from errors import register_error_handlers
from logging_config import configure_logging
from routes import rooms, battles, users, ws

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Prompt Battles API ready")
    yield
    await engine.dispose()


app = FastAPI(title="Prompt Battles API", lifespan=lifespan)

# CORS Configuration
origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
origins.extend(config.CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("Request: %s %s", request.method, request.url.path)
    return await call_next(request)

register_error_handlers(app)

# Include Routers
app.include_router(rooms.router)
app.include_router(battles.router)
app.include_router(users.router)
app.include_router(ws.router)

@app.get("/")
async def root():
    return {"status": "ok", "message": "Prompt Battles API is running"}
