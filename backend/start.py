"""Launcher script: starts uvicorn programmatically instead of via CLI."""
import uvicorn

from mailvec.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "mailvec.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level="info",
    )
