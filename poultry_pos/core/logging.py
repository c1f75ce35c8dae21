import logging

from poultry_pos.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once; repeated calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if any(getattr(h, "_poultry_pos", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._poultry_pos = True
    root.addHandler(handler)

    # Motor/PyMongo heartbeat chatter
    logging.getLogger("pymongo").setLevel(logging.WARNING)
