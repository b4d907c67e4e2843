"""
FastAPI Main Application

Entry point for the household ledger API.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import transactions_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Household Ledger API...")
    yield
    logger.info("Shutting down Household Ledger API...")


app = FastAPI(
    title="Household Ledger API",
    description="Statement upload, categorization and spending analysis",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS configuration
cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(transactions_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Household Ledger API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/api")
async def api_info():
    """API information endpoint."""
    base = "/api/profiles/{profile_id}/transactions"
    return {
        "endpoints": {
            "upload": f"{base}/upload",
            "upload_multiple": f"{base}/upload-multiple",
            "transactions": base,
            "reclassify": f"{base}/reclassify",
            "analyze": f"{base}/analyze",
            "sources": f"{base}/sources",
            "mappings": f"{base}/mappings",
            "keyword_mappings": f"{base}/keyword-mappings",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
