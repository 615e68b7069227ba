"""FastAPI application."""
from fastapi import FastAPI

from .config import settings
from .problem_details import register_problem_handlers
from .routers import notifications, telegram

# Create app
app = FastAPI(
    title="Jira Ticket Notifier",
    version="1.0.0",
    description="Delivers Jira ticket status changes to Telegram subscribers"
)

register_problem_handlers(app)

# Include routers
app.include_router(notifications.router, prefix="/api/v1")
app.include_router(telegram.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
        "environment": settings.ENV,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Jira Ticket Notifier API",
        "version": "1.0.0",
        "docs": "/docs"
    }
