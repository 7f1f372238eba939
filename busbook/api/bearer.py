from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from busbook.src import exceptions


class UserBearer(HTTPBearer):
    """HTTP Bearer scheme reporting a missing token as an invalid one (401)."""

    async def __call__(self, request: Request) -> HTTPAuthorizationCredentials:
        credentials = await super().__call__(request)
        if credentials is None:
            raise exceptions.InvalidToken()
        return credentials


# Define HTTP Bearer authentication scheme shared by every role
bearer_user = UserBearer(scheme_name="User HTTPBearer", auto_error=False)
