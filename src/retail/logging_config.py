"""
Configuration centralisée du logging.

Appelée une seule fois au démarrage du processus ; les modules
se contentent de `logging.getLogger(__name__)`.
"""

import logging
import sys

from retail import config


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or config.get_log_level(),
        format="%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # SQLAlchemy est trop bavard en INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
