import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from storefront.config import settings
from storefront.events import discard_pending, pop_pending

logger = logging.getLogger(__name__)

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, dispatcher=None):
    """Run a unit of work: commit on success, roll back on any error.

    Events recorded in the session are published to ``dispatcher`` only
    after the commit succeeds. A failed unit of work discards them together
    with the rolled back rows.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        discard_pending(db)
        raise
    events = pop_pending(db)
    if dispatcher is not None:
        for event in events:
            try:
                dispatcher.publish(event)
            except Exception:
                # The unit of work is already committed
                logger.exception("Publishing %s failed", event.name)
    elif events:
        logger.debug("No dispatcher attached, dropping %d event(s)", len(events))


def init_db(bind=None):
    # Import all models so Base.metadata knows about them
    import storefront.models.inventory  # noqa: F401
    import storefront.models.invoice  # noqa: F401
    import storefront.models.order  # noqa: F401
    import storefront.models.product  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
