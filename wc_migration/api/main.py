"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .routes import migrations, wizard

app = FastAPI(
    title="WooCommerce Migration API",
    description="Streaming WooCommerce to BigCommerce migrations and the phase wizard",
    version=__version__,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(migrations.router, prefix="/api/migrate", tags=["migrate"])
app.include_router(wizard.router, prefix="/api/wizard", tags=["wizard"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
