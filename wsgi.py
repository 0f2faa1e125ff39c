"""WSGI entrypoint for deployment on various platforms."""
import os

import uvicorn

# Import the FastAPI app
from main import app

if __name__ == "__main__":
    # Get port from environment variable or use default
    port = int(os.environ.get("PORT", 8000))

    # Get log level from environment or default to info
    log_level = os.environ.get("LOG_LEVEL", "info").lower()

    # Run the app with uvicorn (handles web server)
    uvicorn.run(
        "main:app",
        host="0.0.0.0",  # Important: bind to all interfaces
        port=port,
        log_level=log_level,
        access_log=False,  # RequestLoggingMiddleware already logs every request
    )
