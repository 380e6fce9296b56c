#!/usr/bin/env python3
"""
Microfinance Loan Engine Entry Point

Starts the FastAPI server with the loan engine.
"""

import sys

from microfinance.api import run_server
from microfinance.config import get_config
from microfinance.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting Microfinance Loan Engine...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Microfinance Loan Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
