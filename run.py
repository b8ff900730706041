#!/usr/bin/env python3
"""
Cooperative Ledger Entry Point

Starts the FastAPI server with the settings read from COOP_* environment
variables (or .env).
"""

import sys

from coop_ledger.api import run_server
from coop_ledger.config import get_settings


if __name__ == "__main__":
    settings = get_settings()
    print("Starting Cooperative Ledger...")
    print(f"Storage: {settings.storage_backend} ({settings.database_path})")
    print(f"API available at: http://localhost:{settings.api_port}")
    print(f"Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Cooperative Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
