"""Database bootstrapping utilities."""

from __future__ import annotations

from app.packages.wiki.core.logger import logger
from app.packages.wiki.db import session as db_session
from app.packages.wiki.models.base import Base
from app.packages.wiki.models.directory import Directory  # noqa: F401 - ensure table creation
from app.packages.wiki.models.document import Document  # noqa: F401 - ensure table creation


def init_db() -> None:
    """Create the directory and document tables if they do not exist.

    Search index tables live on their own connection and are created by the
    search sync service's ``initialize`` instead.
    """
    Base.metadata.create_all(bind=db_session.engine)
    logger.info("Application tables ensured")
