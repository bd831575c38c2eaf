"""
nodething device process

Serves the Device named by DEVICE_NAME on the store named by STORE_URI
(see .env / nodething.config) until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal
import sys

from nodething import DeviceServer, ThingConfig
from nodething.utils import setup_logging

config = ThingConfig.from_env()

# Setup logging
setup_logging(config.log_level, config.log_file)
logger = logging.getLogger(__name__)


async def main():
    """Main entry point"""
    server = DeviceServer(config)
    loop = asyncio.get_running_loop()
    
    # Handle shutdown signals
    def signal_handler(sig):
        logger.info(f"Received signal {sig}")
        asyncio.ensure_future(server.stop())
    
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)
    
    try:
        await server.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        await server.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server crashed: {e}", exc_info=True)
        sys.exit(1)
