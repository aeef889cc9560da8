from dotenv import load_dotenv
import os

load_dotenv()

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from core.config import get_settings
from core.errors import TableGateError
from core.logging import setup_logging
from database.database import get_app_engine, get_data_sources
from database.init_db import init_db
from routes import activated_tables
from routes import permissions
from routes import tables


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings)
    init_db(get_app_engine())
    logger.info(f"Serving databases: {sorted(settings.allowed_databases)}")
    yield
    get_data_sources().dispose()


app = FastAPI(title="tablegate", lifespan=lifespan)


allowed_origins = os.getenv("ALLOWED_ORIGINS", "*")
if allowed_origins != "*":
    allowed_origins = [origin.strip() for origin in allowed_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins if allowed_origins != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TableGateError)
async def tablegate_error_handler(request: Request, exc: TableGateError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


app.include_router(tables.router)
app.include_router(activated_tables.router)
app.include_router(permissions.router)
