import datetime, logging
from busbook.src.db import sessionMaker, UserToken
from sqlalchemy.orm import Session
from sqlalchemy import delete

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Cleaner")


def removeExpiredTokens(session: Session) -> int:
    currentTime = datetime.datetime.now(datetime.timezone.utc)
    result = session.execute(
        delete(UserToken).where(UserToken.expires_at < currentTime)
    )
    session.commit()
    deletedCount = result.rowcount
    logger.info(f"Removed {deletedCount} tokens from {UserToken.__tablename__} table")
    return deletedCount


def main():
    try:
        with sessionMaker() as session:
            removeExpiredTokens(session)
    except Exception:
        logger.exception("cleaner.py failed")


if __name__ == "__main__":
    main()
