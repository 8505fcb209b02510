"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tagflow.database import engine, Base
from tagflow.api.routes import router
from tagflow.logging_config import configure_logging
# Import models to register them with SQLAlchemy Base
from tagflow.models.domain import Project, Equipment, Drawing, Line
from tagflow.models.audit import AuditLogEntry

configure_logging()
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="tagflow - Equipment Tag Management",
    description="Equipment catalog with batch tag renumbering, relationship hierarchies and an append-only audit trail.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["tagflow"])
logger.info("tagflow API ready")


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "tagflow"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
