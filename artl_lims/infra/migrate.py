from __future__ import annotations

import logging
import os

from alembic import command
from alembic.config import Config

from artl_lims.infra.logging_config import configure_logging

logger = logging.getLogger(__name__)

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def run_upgrade_head(config_path: str = ALEMBIC_CONFIG) -> None:
    config = Config(config_path)
    logger.info("upgrading database schema to head using %s", config_path)
    command.upgrade(config, "head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
