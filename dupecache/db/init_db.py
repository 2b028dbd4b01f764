from __future__ import annotations

import logging

from sqlalchemy import Engine, text

from dupecache.db.migrations import MIGRATIONS, apply_migrations
from dupecache.db.models import Base
from dupecache.db.session import get_engine

logger = logging.getLogger(__name__)


def initialize_database(engine: Engine | None = None) -> Engine:
    target = engine or get_engine()
    Base.metadata.create_all(bind=target)
    apply_migrations(target)
    logger.debug("Database schema at migration %d (%s)", MIGRATIONS[-1].version, target.url.render_as_string())

    if target.url.drivername.startswith("sqlite"):
        with target.connect() as conn:
            conn.execute(text("PRAGMA optimize;"))
            conn.commit()
    return target
