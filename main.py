# main.py
import asyncio
import logging
from campus_eats.app import CampusEatsApp
from campus_eats.config import setup_logging

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        app = CampusEatsApp()
        logger.info("Starting Campus Eats API...")
        await app.start()
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        raise

if __name__ == "__main__":
    asyncio.run(main())
