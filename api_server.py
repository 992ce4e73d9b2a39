"""
FastAPI backend server for the Damage Estimator.
This provides the REST API used by the estimator frontend.
"""

from __future__ import annotations

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from damage_estimator import __version__
from damage_estimator.api import create_router
from damage_estimator.config import load_settings, validate_settings
from damage_estimator.utils import setup_logging

# Setup logging
logger = setup_logging()


def create_app() -> FastAPI:
    """Build the application with CORS and the damage estimate router."""
    settings = load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Damage Estimator API",
        description="Vehicle damage analysis, cost estimation and claim routing",
        version=__version__,
    )

    # Local frontend dev servers; deployed frontends come from FRONTEND_URL
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    frontend_url = os.getenv("FRONTEND_URL")
    if frontend_url:
        allowed_origins.append(frontend_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_router(settings))
    logger.info("Damage estimate router registered")

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "damage-estimator", "version": __version__}

    @app.get("/api/config/status")
    async def config_status():
        """Check configuration status."""
        try:
            problems = validate_settings(load_settings())
            return {
                "valid": len(problems) == 0,
                "errors": problems,
            }
        except Exception as e:
            return {
                "valid": False,
                "errors": [str(e)],
            }

    return app


app = create_app()


# Entry point for running with uvicorn directly
def main():
    """Run the server with uvicorn."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
