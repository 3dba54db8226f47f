#!/usr/bin/env python3
"""
Run script for the claim-intake API server.

Usage:
    python run_server.py

Make sure to:
1. Copy .env.example to .env and point the INTAKE_*_PATH settings at your data
2. Load village boundaries (INTAKE_GAZETTEER_PATH) and any spatial layers
"""

import logging
import os
import sys

# Quiet noisy HTTP client logging before anything imports it
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Add src to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def main():
    """Run the API server with its background worker pool."""
    import uvicorn
    from src.utils.config import get_settings

    settings = get_settings()

    print("=" * 60)
    print("FRA Claim Intake")
    print("=" * 60)
    print(f"Server: http://{settings.host}:{settings.port}")
    print(f"Database: {settings.database_path}")
    print(f"Gazetteer: {settings.gazetteer_path or '(none)'}")
    print(f"Workers: {settings.workers_per_stage}")
    print("=" * 60)
    print()
    print("Endpoints:")
    print(f"  - Health: http://{settings.host}:{settings.port}/health")
    print(f"  - Ingest: POST http://{settings.host}:{settings.port}/jobs")
    print(f"  - Review queue: http://{settings.host}:{settings.port}/review/queue")
    print()

    uvicorn.run(
        "src.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
