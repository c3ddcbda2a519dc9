"""
FinLedger - Logging Configuration

Process-level logging setup for worker entry points. Library modules only
create named loggers and never configure handlers themselves.
"""

import logging
from typing import Optional

from finledger.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with the standard format."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # Engine echo is controlled by settings.debug
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
