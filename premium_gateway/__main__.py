import logging
import sys

import uvicorn

from premium_gateway.config import load_settings
from premium_gateway.errors import ConfigError
from premium_gateway.main import create_app

logger = logging.getLogger("premium_gateway")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_logging("INFO")
        logger.error("Configuration error: %s", exc.message)
        sys.exit(1)

    configure_logging(settings.log_level)
    app = create_app(settings)
    logger.info("Starting server on port %s (PayPal %s)", settings.port, settings.paypal_mode)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
