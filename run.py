#!/usr/bin/env python3
"""
Village SACCO Entry Point

Builds the storage handle from configuration, serves the API with uvicorn
and closes storage on shutdown.
"""

import sys

import uvicorn

from village_sacco.api import create_app
from village_sacco.config import get_config
from village_sacco.logging_config import setup_logging
from village_sacco.system import build_system


def run_server(host: str, port: int, log_level: str = "info") -> None:
    """Run the FastAPI server around a freshly built system"""
    system = build_system()
    try:
        uvicorn.run(create_app(system), host=host, port=port, log_level=log_level)
    finally:
        system.close()


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Starting Village SACCO API on {config.api_host}:{config.api_port}")
    logger.info(f"Storage: {config.database_url}")

    try:
        run_server(config.api_host, config.api_port, log_level=config.log_level.lower())
    except KeyboardInterrupt:
        logger.info("Shutting down Village SACCO API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
