# src/fs_gateway/__main__.py
"""
Main entry point for the FreeSWITCH gateway.
Loads configuration, configures logging and serves the HTTP API; the
switch connection is started and stopped by the application lifespan.

Usage: python -m fs_gateway [config.yml]
"""

import sys
from pathlib import Path
from typing import List, Optional

from .api.server import run
from .utils.config import Config
from .utils.errors import ConfigurationError
from .utils.logger import GatewayLogger, LoggerConfig

def main(argv: Optional[List[str]] = None) -> int:
    """
    Application entry point.

    Args:
        argv: Command line arguments without the program name

    Returns:
        Process exit code
    """
    argv = sys.argv[1:] if argv is None else argv
    config_path = Path(argv[0]) if argv else None
    config = Config()

    try:
        config.load(config_path)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    GatewayLogger().configure(LoggerConfig(
        level=config.logging.level,
        format=config.logging.format,
        output_file=config.logging.output
    ))
    log = GatewayLogger().get_logger(__name__)
    log.info("Starting FreeSWITCH gateway",
             config_path=str(config_path) if config_path else "defaults",
             log_level=config.logging.level,
             switch=f"{config.switch.host}:{config.switch.port}",
             api_port=config.api.port)

    try:
        run(config)
    except KeyboardInterrupt:
        pass
    finally:
        log.info("Application shutdown complete")
    return 0

if __name__ == "__main__":
    sys.exit(main())
