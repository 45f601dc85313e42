"""Main entry point for running the FastAPI application with auto-reload."""
import uvicorn

from cmatch.config import settings

if __name__ == "__main__":
    print(f"Starting {settings.app_name} v{settings.version}")
    print(f"Debug mode: {settings.debug}")
    print(f"Database: {settings.db.url.split('@')[-1] if '@' in settings.db.url else settings.db.url}")
    print(f"Default matching method: {settings.matching.default_method}")
    print("-" * 50)

    uvicorn.run(
        "cmatch.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["cmatch", "oracles"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
