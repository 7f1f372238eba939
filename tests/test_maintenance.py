from datetime import datetime, timedelta, timezone

from busbook.setup import initDB
from busbook.src.cleaner import removeExpiredTokens
from busbook.src.db import User, UserToken, sessionMaker
from busbook.src.enums import Role


def test_cleaner_removes_only_expired_tokens(client, customer):
    session = sessionMaker()
    try:
        session.add(
            UserToken(
                user_id=customer.id,
                expires_in=60,
                expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
            )
        )
        session.commit()

        assert removeExpiredTokens(session) == 1
        assert session.query(UserToken).filter(UserToken.user_id == customer.id).count() == 1
    finally:
        session.close()

    assert client.get("/api/account", headers=customer.headers).status_code == 200


def test_init_creates_a_single_master_admin():
    initDB()
    initDB()

    session = sessionMaker()
    try:
        masters = session.query(User).filter(User.role == Role.MASTER_ADMIN).all()
    finally:
        session.close()
    assert len(masters) == 1
