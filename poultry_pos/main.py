from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from poultry_pos.api.v1.api import api_router
from poultry_pos.core.config import settings
from poultry_pos.core.logging import configure_logging
from poultry_pos.db.mongo import connect_to_mongo, disconnect_from_mongo


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await connect_to_mongo()
    yield
    await disconnect_from_mongo()

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}

@app.get("/health")
async def health():
    return {"status": "ok"}

app.include_router(api_router, prefix=settings.API_V1_STR)
