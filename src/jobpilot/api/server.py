"""
FastAPI server exposing the jobpilot pipeline to the dashboard.

The server only performs user-initiated mutations (campaign lifecycle,
application actions) and reads. All pipeline work happens in the stage
workers, which it reaches through the work queues.

To run the server:
    python -m uvicorn jobpilot.api.server:app --reload --app-dir src
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobpilot.api.handlers.exceptions import EXCEPTION_HANDLERS
from jobpilot.api.middleware.logging import log_requests_middleware
from jobpilot.api.routes import applications, campaigns, health, job_offers, sources
from jobpilot.config.settings import FRONTEND_URL

# ------------- FastAPI Setup -------------

# Create the FastAPI app
app = FastAPI(
    title="jobpilot",
    description="Campaign execution pipeline for automated job search",
    version="1.0",
)

origins = [
    "http://localhost:3000",  # local development
    "http://127.0.0.1:3000",  # local development
]

# Add production frontend URL from environment variable if provided
if FRONTEND_URL and FRONTEND_URL not in origins:
    origins.append(FRONTEND_URL)

# For development, allow all origins if no production URL is set
if not FRONTEND_URL:
    origins.append("*")

# Add the CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Add request logging middleware
app.middleware("http")(log_requests_middleware)

# Add exception handlers
for exception_class, handler in EXCEPTION_HANDLERS:
    app.add_exception_handler(exception_class, handler)

# Include routers
app.include_router(campaigns.router)
app.include_router(job_offers.router)
app.include_router(applications.router)
app.include_router(sources.router)
app.include_router(health.router)

# For running as standalone server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
