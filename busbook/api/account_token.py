from datetime import datetime, timedelta, timezone
from enum import IntEnum
from secrets import token_hex
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busbook.api.bearer import bearer_user
from busbook.src.constants import MAX_USER_TOKENS, MAX_TOKEN_VALIDITY
from busbook.src.db import User, UserToken, sessionMaker
from busbook.src import argon2, exceptions, schemas, validators, getters
from busbook.src.enums import AccountStatus, OrderIn, PlatformType
from busbook.src.loggers import logEvent
from busbook.src.functions import (
    enumStr,
    fuseExceptionResponses,
    makeResponse,
    paginate,
)
from busbook.src.urls import URL_TOKEN

route_token = APIRouter()


## Output Schema
class MaskedTokenSchema(BaseModel):
    id: int
    user_id: int
    expires_in: int
    expires_at: datetime
    platform_type: int
    client_details: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


class TokenSchema(MaskedTokenSchema):
    access_token: str
    token_type: Optional[str] = "bearer"
    role: int


class TokenResponse(schemas.Response):
    data: TokenSchema


class TokenListData(BaseModel):
    items: List[MaskedTokenSchema]
    pagination: schemas.Pagination


class TokenListResponse(schemas.Response):
    data: TokenListData


## Input Forms
class CreateForm(BaseModel):
    username: str = Field(Form(max_length=32))
    password: str = Field(Form(max_length=32))
    platform_type: PlatformType = Field(
        Form(description=enumStr(PlatformType), default=PlatformType.OTHER)
    )
    client_details: str | None = Field(Form(max_length=1024, default=None))


class UpdateForm(BaseModel):
    id: int | None = Field(Form(default=None))


class DeleteForm(BaseModel):
    id: int | None = Field(Form(default=None))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3


class QueryParams(BaseModel):
    platform_type: PlatformType | None = Field(
        Query(default=None, description=enumStr(PlatformType))
    )
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=10, ge=1, le=100))


## API endpoints
@route_token.post(
    URL_TOKEN,
    tags=["Token"],
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [exceptions.InactiveAccount(), exceptions.InvalidCredentials()]
    ),
    description="""
    Issues a new access token after validating the credentials of any account.
    Suspended accounts cannot login.
    Limits active tokens using MAX_USER_TOKENS, the oldest token is rotated out.
    Sets expiration with expires_in=MAX_TOKEN_VALIDITY (in seconds).
    """,
)
async def create_token(
    fParam: CreateForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        user = session.query(User).filter(User.username == fParam.username).first()
        if user is None:
            raise exceptions.InvalidCredentials()
        if not argon2.checkPassword(fParam.password, user.password):
            raise exceptions.InvalidCredentials()
        if user.status != AccountStatus.ACTIVE:
            raise exceptions.InactiveAccount()

        newHash = argon2.rehashPassword(fParam.password, user.password)
        if newHash is not None:
            user.password = newHash

        # Remove excess tokens from DB
        tokens = (
            session.query(UserToken)
            .filter(UserToken.user_id == user.id)
            .order_by(UserToken.created_on.desc(), UserToken.id.desc())
            .all()
        )
        for token in tokens[MAX_USER_TOKENS - 1 :]:
            session.delete(token)
        session.flush()

        # Create a new token
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=MAX_TOKEN_VALIDITY)
        token = UserToken(
            user_id=user.id,
            expires_in=MAX_TOKEN_VALIDITY,
            expires_at=expires_at,
            platform_type=fParam.platform_type,
            client_details=fParam.client_details,
        )
        session.add(token)
        session.commit()
        session.refresh(token)

        tokenData = jsonable_encoder(token)
        tokenData["role"] = user.role
        tokenLogData = tokenData.copy()
        tokenLogData.pop("access_token")
        logEvent(token, request_info, tokenLogData)
        return makeResponse(tokenData, "Login successful")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_token.patch(
    URL_TOKEN,
    tags=["Token"],
    response_model=TokenResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Refreshes an access token of the account.
    If no id is provided, refreshes the token used in this request.
    If an id is provided, it must be the token used in this request.
    Extends expires_at by MAX_TOKEN_VALIDITY seconds and rotates the access_token value.
    """,
)
async def refresh_token(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)

        if fParam.id is not None and fParam.id != token.id:
            tokenToUpdate = (
                session.query(UserToken).filter(UserToken.id == fParam.id).first()
            )
            if tokenToUpdate is None:
                raise exceptions.InvalidIdentifier()
            raise exceptions.NoPermission()

        token.expires_in += MAX_TOKEN_VALIDITY
        token.expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=MAX_TOKEN_VALIDITY
        )
        token.access_token = token_hex(32)
        session.commit()
        session.refresh(token)

        tokenData = jsonable_encoder(token)
        tokenData["role"] = user.role
        tokenLogData = tokenData.copy()
        tokenLogData.pop("access_token")
        logEvent(token, request_info, tokenLogData, user)
        return makeResponse(tokenData, "Token refreshed")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_token.delete(
    URL_TOKEN,
    tags=["Token"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Revokes an access token (logout).
    If no ID is provided, it deletes the token used in the request.
    If an ID is provided, the token must belong to the same account.
    If the token ID is invalid or already deleted, the operation is silently ignored.
    """,
)
async def delete_token(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)

        if fParam.id is None:
            tokenToDelete = token
        else:
            tokenToDelete = (
                session.query(UserToken).filter(UserToken.id == fParam.id).first()
            )
            if tokenToDelete is None:
                return Response(status_code=status.HTTP_204_NO_CONTENT)
            if tokenToDelete.user_id != token.user_id:
                raise exceptions.NoPermission()

        session.delete(tokenToDelete)
        session.commit()
        logEvent(
            token,
            request_info,
            jsonable_encoder(tokenToDelete, exclude={"access_token"}),
        )
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_token.get(
    URL_TOKEN,
    tags=["Token"],
    response_model=TokenListResponse,
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Lists the tokens of the authenticated account, masked.
    Useful for reviewing the devices logged into the account.
    """,
)
async def fetch_tokens(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)

        query = session.query(UserToken).filter(UserToken.user_id == token.user_id)
        if qParam.platform_type is not None:
            query = query.filter(UserToken.platform_type == qParam.platform_type)

        # Ordering
        orderingAttribute = getattr(UserToken, OrderBy(qParam.order_by).name)
        if qParam.order_in == OrderIn.ASC:
            query = query.order_by(orderingAttribute.asc())
        else:
            query = query.order_by(orderingAttribute.desc())

        # Pagination
        tokens, pagination = paginate(query, qParam.page, qParam.limit)
        return makeResponse(
            {"items": jsonable_encoder(tokens), "pagination": pagination},
            "Tokens fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
