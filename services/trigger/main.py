import sys

from loguru import logger

from trade_trigger_engine.config import AppSettings
from trade_trigger_engine.runner import run


def main():
    settings = AppSettings()
    logger.remove()
    logger.add(lambda msg: print(msg, end=""), level=settings.log_level)

    sys.exit(run(settings))


if __name__ == "__main__":
    main()
