import logging

from db.models import Base
from db.session import engine

logger = logging.getLogger(__name__)


def init_db(bind=None) -> None:
    """Create all tables if they don't exist yet."""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Database ready at %s", bind.url.render_as_string(hide_password=True))
