import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lakesync.config import settings
from lakesync.core.errors import register_error_handlers
from lakesync.core.task_registry import task_registry
from lakesync.routers import databricks, sync

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="lakesync API",
    description="Databricks SQL warehouse API and Databricks-to-Snowflake sync",
    version="1.0.0",
)

# Startup info
logger.info(f"Environment: {settings.env}")
logger.info(f"Databricks host: {settings.databricks_base_url}")
logger.info(f"CORS allowed origins: {settings.cors_origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Routers
app.include_router(databricks.router, prefix="/api", tags=["databricks"])
app.include_router(sync.router, prefix="/api/sync", tags=["sync"])


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel running sync pipelines on server shutdown."""
    await task_registry.cancel_all(timeout=10.0)


@app.get("/health")
async def health():
    return {"status": "ok"}


def run():
    """Console entry point: serve the API on the configured port."""
    uvicorn.run("lakesync.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
