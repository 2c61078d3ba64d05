import logging
import sys
from typing import Optional

from .settings import config_settings


def configure_logging(service_name: str, level: Optional[str] = None) -> None:
    """
    Configure process-wide logging for the service.
    Safe to call multiple times (it will just reconfigure root logger).
    """
    log_level = (level or config_settings.log_level).upper()

    logging.basicConfig(
        level=log_level,
        format=(
            "%(asctime)s | %(levelname)s | %(name)s | "
            f"service={service_name} | %(message)s"
        ),
        stream=sys.stdout,
        force=True,
    )

    logging.getLogger(__name__).info(
        "Logging configured for service=%s", service_name
    )
