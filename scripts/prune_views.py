from __future__ import annotations

import logging
import sys

from localbiz.core.config import settings
from localbiz.core.logging_config import configure_logging
from localbiz.db.session import SessionLocal
from localbiz.services.analytics import prune_views

logger = logging.getLogger(__name__)


def main() -> int:
    days = int(sys.argv[1]) if len(sys.argv) > 1 else settings.view_retention_days
    if days <= 0:
        print("Retention disabled (VIEW_RETENTION_DAYS=0); nothing to prune")
        return 0

    configure_logging(log_dir=settings.log_dir, level=settings.log_level)
    db = SessionLocal()
    try:
        removed = prune_views(db, older_than_days=days)
    finally:
        db.close()
    print(f"Removed {removed} view records older than {days} days")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
