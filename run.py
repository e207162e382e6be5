#!/usr/bin/env python3
"""
BMS Funds Movement Entry Point

Starts the FastAPI server with the funds-movement core.
"""

import sys

import uvicorn

from bms_core.api import create_app
from bms_core.config import get_config
from bms_core.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("🏦 Starting BMS Funds Movement API...")
    print(f"🔒 Transfers above {config.step_up_threshold} require an OTP")
    print("📜 Hash-chained audit trail active")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run(
            create_app(),
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down BMS Funds Movement API...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
