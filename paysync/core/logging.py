import logging
import os


def configure_logging() -> None:
    """Configure logging defaults for the service; ``LOG_LEVEL`` overrides the level."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # Stripe's SDK logs every request at INFO.
    logging.getLogger("stripe").setLevel(logging.WARNING)
