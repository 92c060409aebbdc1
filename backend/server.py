from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import os
import logging

import settings
from database import database
from routes import (
    auth, users, profile, password, notes, ai, companies, admin, contracts,
    incorporation, billing, webhooks, connect, client_portal, system_status,
)
from services.pdf_service import pdf_service
from services.status_service import status_service
from utils.http import install_error_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("PYTEST_RUNNING"):
        yield
        return

    # Startup
    logger.info(f"Starting {settings.APP_NAME} API ({settings.ENVIRONMENT})")
    await database.connect()
    await status_service.initialize()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME} API")
    await pdf_service.close()
    await database.close()


# Create FastAPI app
app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Companies, contracts, incorporation and subscription billing",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(profile.router)
app.include_router(password.router)
app.include_router(notes.router)
app.include_router(ai.router)
app.include_router(companies.router)
app.include_router(admin.router)
app.include_router(contracts.router)
app.include_router(incorporation.router)
app.include_router(incorporation.dashboard_router)
app.include_router(billing.router)
app.include_router(webhooks.router)
app.include_router(connect.router)
app.include_router(client_portal.router)
app.include_router(system_status.router)

install_error_handlers(app)


# Health check
@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.ENVIRONMENT == "development"
    )
