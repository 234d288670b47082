import logging

from elearning.database import Base, engine
import elearning.models  # registers every model on Base.metadata

logger = logging.getLogger(__name__)


def main():
    Base.metadata.create_all(bind=engine)
    logger.info("Chat tables created on %s", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
