"""Main application entry point."""

import logging

import uvicorn
from dotenv import load_dotenv

from chama.api.app import create_app
from chama.config import get_settings
from chama.services.logging import setup_server_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Load configuration, set up logging and serve the API."""
    load_dotenv()
    settings = get_settings()
    setup_server_logging(settings.log_file)
    logger.info("Starting ledger API on %s:%d", settings.host, settings.port)
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
