# marketplace/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from marketplace.config import settings
from marketplace.database import Base, engine
from marketplace.routers import admin, auth, profile
from marketplace.utils.avatar import avatar_dir
from marketplace.utils.errors import register_exception_handlers

from fastapi.staticfiles import StaticFiles

import time
import logging
from fastapi import Request
from marketplace.logging_config import setup_logging


setup_logging()
logger = logging.getLogger("marketplace")


# 建立資料表（若不存在）
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Marketplace Backend", version="1.0.0")

register_exception_handlers(app)

avatar_dir()
app.mount("/static", StaticFiles(directory=settings.STATIC_DIR), name="static")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    try:
        response = await call_next(request)
        ms = int((time.time() - start) * 1000)
        logger.info("%s %s -> %s (%dms)", request.method, request.url.path, response.status_code, ms)
        return response
    except Exception:
        ms = int((time.time() - start) * 1000)
        logger.exception("Unhandled error %s %s (%dms)", request.method, request.url.path, ms)
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(admin.router)

@app.get("/")
def root():
    return {"message": "Marketplace backend is running!"}
