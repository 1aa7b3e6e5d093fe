import logging


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, level.upper(), logging.INFO)
    )
    # discovery and caldav chatter drowns out the sync progress
    for noisy in ("googleapiclient.discovery_cache", "caldav"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
