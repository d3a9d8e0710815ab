#!/usr/bin/env python3
"""
Token Ledger Entry Point

Starts the FastAPI server with the configured ledger (see TOKEN_LEDGER_*
environment variables).
"""

import sys

from token_ledger.api import run_server
from token_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Token Ledger...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Token Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
