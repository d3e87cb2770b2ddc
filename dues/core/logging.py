import logging
import sys

from dues.core.conf import settings


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once for API and CLI processes."""
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if any(getattr(h, '_dues_handler', False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    handler._dues_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # The stripe SDK logs every request at INFO
    logging.getLogger('stripe').setLevel(logging.WARNING)
