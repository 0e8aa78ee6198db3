#!/usr/bin/env python3
"""
adreport API Startup Script

Starts the report data FastAPI server in development mode.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the adreport API server."""
    print("Starting adreport API server...")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   ReDoc:       http://localhost:8000/redoc")
    print("")

    if not Path(".env").exists():
        print("WARNING: No .env file found; using defaults.")
        print("   Set API_BASE_URL to the dashboard backend, e.g.")
        print("   API_BASE_URL=http://localhost:3000/api/v1")
        print("")

    try:
        uvicorn.run(
            "adreport.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["adreport"],
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\nShutting down adreport API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
