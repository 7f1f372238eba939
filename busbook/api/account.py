from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, EmailStr
from sqlalchemy.orm.session import Session

from busbook.api.bearer import bearer_user
from busbook.src.constants import (
    ACCOUNT_MANAGERS,
    ACCOUNT_REMOVERS,
    MAX_BUS_ADMINS_PER_OWNER,
    REGEX_PASSWORD,
    REGEX_PHONE_NUMBER,
    REGEX_USERNAME,
)
from busbook.src.db import User, UserToken, sessionMaker
from busbook.src import argon2, exceptions, schemas, validators, getters
from busbook.src.enums import AccountStatus, GenderType, OrderIn, Role, SubRole
from busbook.src.loggers import logEvent
from busbook.src.functions import (
    enumStr,
    fuseExceptionResponses,
    makeResponse,
    paginate,
    updateIfChanged,
)
from busbook.src.redis import acquireLock, releaseLock
from busbook.src.urls import URL_ACCOUNT, URL_REGISTER, URL_USER, URL_USER_BY_ID

route_account = APIRouter()


## Output Schema
class UserSchema(BaseModel):
    id: int
    username: str
    role: int
    sub_role: Optional[int]
    full_name: str
    email_id: str
    phone_number: str
    gender: int
    address: Optional[str]
    license_number: Optional[str]
    experience_years: Optional[int]
    status: int
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class UserResponse(schemas.Response):
    data: UserSchema


class UserListData(BaseModel):
    items: List[UserSchema]
    pagination: schemas.Pagination


class UserListResponse(schemas.Response):
    data: UserListData


## Input Forms
class RegisterForm(BaseModel):
    username: str = Field(Form(pattern=REGEX_USERNAME, min_length=4, max_length=32))
    password: str = Field(Form(pattern=REGEX_PASSWORD, min_length=8, max_length=32))
    full_name: str = Field(Form(min_length=2, max_length=64))
    email_id: EmailStr = Field(
        Form(max_length=256, description="Email in RFC 5322 format")
    )
    phone_number: str = Field(
        Form(pattern=REGEX_PHONE_NUMBER, description="Indian mobile number")
    )
    gender: GenderType = Field(
        Form(description=enumStr(GenderType), default=GenderType.OTHER)
    )
    address: str | None = Field(Form(max_length=256, default=None))


class CreateForm(RegisterForm):
    role: Role = Field(Form(description=enumStr(Role)))
    sub_role: SubRole | None = Field(
        Form(description=enumStr(SubRole), default=None)
    )
    license_number: str | None = Field(Form(max_length=32, default=None))
    experience_years: int | None = Field(Form(ge=0, le=60, default=None))


class UpdateForm(BaseModel):
    password: str | None = Field(
        Form(pattern=REGEX_PASSWORD, min_length=8, max_length=32, default=None)
    )
    full_name: str | None = Field(Form(min_length=2, max_length=64, default=None))
    email_id: EmailStr | None = Field(
        Form(max_length=256, default=None, description="Email in RFC 5322 format")
    )
    phone_number: str | None = Field(
        Form(pattern=REGEX_PHONE_NUMBER, default=None, description="Indian mobile number")
    )
    gender: GenderType | None = Field(
        Form(description=enumStr(GenderType), default=None)
    )
    address: str | None = Field(Form(max_length=256, default=None))
    license_number: str | None = Field(Form(max_length=32, default=None))
    experience_years: int | None = Field(Form(ge=0, le=60, default=None))


class ProfileUpdateForm(UpdateForm):
    current_password: str | None = Field(
        Form(max_length=32, default=None, description="Required to change the password")
    )


class UpdateFormForManager(UpdateForm):
    sub_role: SubRole | None = Field(
        Form(description=enumStr(SubRole), default=None)
    )
    status: AccountStatus | None = Field(
        Form(description=enumStr(AccountStatus), default=None)
    )


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3


class QueryParams(BaseModel):
    username: str | None = Field(Query(default=None))
    full_name: str | None = Field(Query(default=None))
    role: Role | None = Field(Query(default=None, description=enumStr(Role)))
    sub_role: SubRole | None = Field(
        Query(default=None, description=enumStr(SubRole))
    )
    status: AccountStatus | None = Field(
        Query(default=None, description=enumStr(AccountStatus))
    )
    created_by: int | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=10, ge=1, le=100))


## Functions
def subordinateIds(session: Session, user: User) -> set[int]:
    """Collect the ids of every account below the given account in the creation tree."""
    subordinates = set()
    level = {user.id}
    while level:
        rows = session.query(User.id).filter(User.created_by.in_(level)).all()
        level = {row.id for row in rows} - subordinates - {user.id}
        subordinates |= level
    return subordinates


def manageableUser(session: Session, manager: User, user_id: int) -> User:
    """Fetch an account the manager may administer, the master admin manages all."""
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise exceptions.InvalidIdentifier()
    if manager.role == Role.MASTER_ADMIN:
        return user
    if user.id not in subordinateIds(session, manager):
        raise exceptions.InvalidIdentifier()
    return user


def checkSubRole(role: Role, sub_role: SubRole | None):
    if role == Role.BUS_EMPLOYEE and sub_role is None:
        raise exceptions.MissingParameter(User.sub_role)
    if role != Role.BUS_EMPLOYEE and sub_role is not None:
        raise exceptions.UnexpectedParameter(User.sub_role)


def updateUser(session: Session, user: User, fParam: UpdateForm):
    updateIfChanged(
        user,
        fParam,
        [
            User.full_name.key,
            User.email_id.key,
            User.phone_number.key,
            User.gender.key,
            User.address.key,
            User.license_number.key,
            User.experience_years.key,
        ],
    )
    if fParam.password is not None:
        user.password = argon2.makePassword(fParam.password)
    if isinstance(fParam, UpdateFormForManager):
        if fParam.sub_role is not None and user.sub_role != fParam.sub_role:
            checkSubRole(user.role, fParam.sub_role)
            user.sub_role = fParam.sub_role
        if fParam.status is not None and user.status != fParam.status:
            # Suspended accounts lose every session
            if fParam.status == AccountStatus.SUSPENDED:
                session.query(UserToken).filter(UserToken.user_id == user.id).delete()
            user.status = fParam.status


## API endpoints
@route_account.post(
    URL_REGISTER,
    tags=["Account"],
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses([exceptions.UniqueViolation("")]),
    description="""
    Self registration of a customer account.
    The password is hashed using Argon2 before storing.
    Username, email and phone number must be unique.
    """,
)
async def register_customer(
    fParam: RegisterForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        user = User(
            username=fParam.username,
            password=argon2.makePassword(fParam.password),
            role=Role.CUSTOMER,
            full_name=fParam.full_name,
            email_id=fParam.email_id,
            phone_number=fParam.phone_number,
            gender=fParam.gender,
            address=fParam.address,
        )
        session.add(user)
        session.commit()
        session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        logEvent(None, request_info, userData)
        return makeResponse(userData, "Registration successful")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_account.get(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=UserResponse,
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="Fetch the profile of the authenticated account.",
)
async def fetch_account(bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        return makeResponse(jsonable_encoder(user, exclude={"password"}), "Profile fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_account.patch(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=UserResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.IncorrectPassword(),
            exceptions.UniqueViolation(""),
        ]
    ),
    description="""
    Update the profile of the authenticated account.
    The role, the sub role and the status cannot be changed by the account itself.
    Changing the password requires the current password.
    Modifications are only saved if changes are detected.
    """,
)
async def update_account(
    fParam: ProfileUpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)

        if fParam.password is not None:
            if fParam.current_password is None or not argon2.checkPassword(
                fParam.current_password, user.password
            ):
                raise exceptions.IncorrectPassword()

        updateUser(session, user, fParam)
        haveUpdates = session.is_modified(user)
        if haveUpdates:
            session.commit()
            session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        if haveUpdates:
            logEvent(token, request_info, userData, user)
        return makeResponse(userData, "Profile updated")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_account.post(
    URL_USER,
    tags=["User"],
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.MissingParameter(User.sub_role),
            exceptions.ExceededMaxLimit(User),
            exceptions.UniqueViolation(""),
        ]
    ),
    description="""
    Create an account directly below the authenticated account in the hierarchy.
    The master admin creates bus owners, bus owners create bus admins,
    bus admins create booking men and bus employees.
    A bus owner can have at most MAX_BUS_ADMINS_PER_OWNER bus admins.
    A sub role (driver or helper) is required for bus employees and forbidden otherwise.
    """,
)
async def create_user(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    lock = None
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        creator = getters.principal(token, session)
        validators.role(creator, ACCOUNT_MANAGERS)
        validators.creatableRole(creator, fParam.role)
        checkSubRole(fParam.role, fParam.sub_role)

        if fParam.role == Role.BUS_ADMIN:
            # Serialize the admin creations of an owner while counting them
            lock = acquireLock(User.__tablename__, creator.id)
            adminCount = (
                session.query(User)
                .filter(User.created_by == creator.id, User.role == Role.BUS_ADMIN)
                .count()
            )
            if adminCount >= MAX_BUS_ADMINS_PER_OWNER:
                raise exceptions.ExceededMaxLimit(User)

        user = User(
            username=fParam.username,
            password=argon2.makePassword(fParam.password),
            role=fParam.role,
            sub_role=fParam.sub_role,
            full_name=fParam.full_name,
            email_id=fParam.email_id,
            phone_number=fParam.phone_number,
            gender=fParam.gender,
            address=fParam.address,
            license_number=fParam.license_number,
            experience_years=fParam.experience_years,
            created_by=creator.id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        logEvent(token, request_info, userData, creator)
        return makeResponse(userData, f"{Role(user.role).name} account created")
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_account.get(
    URL_USER,
    tags=["User"],
    response_model=UserListResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the accounts below the authenticated account, the master admin sees every account.
    Filter by username, name, role, sub role, status, creator and creation time.
    Paginate using page and limit.
    """,
)
async def fetch_users(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        manager = getters.principal(token, session)
        validators.role(manager, ACCOUNT_MANAGERS)

        query = session.query(User)
        if manager.role != Role.MASTER_ADMIN:
            query = query.filter(User.id.in_(subordinateIds(session, manager)))

        # Filters
        if qParam.username is not None:
            query = query.filter(User.username.ilike(f"%{qParam.username}%"))
        if qParam.full_name is not None:
            query = query.filter(User.full_name.ilike(f"%{qParam.full_name}%"))
        if qParam.role is not None:
            query = query.filter(User.role == qParam.role)
        if qParam.sub_role is not None:
            query = query.filter(User.sub_role == qParam.sub_role)
        if qParam.status is not None:
            query = query.filter(User.status == qParam.status)
        if qParam.created_by is not None:
            query = query.filter(User.created_by == qParam.created_by)
        # created_on based
        if qParam.created_on_ge is not None:
            query = query.filter(User.created_on >= qParam.created_on_ge)
        if qParam.created_on_le is not None:
            query = query.filter(User.created_on <= qParam.created_on_le)

        # Ordering
        orderingAttribute = getattr(User, OrderBy(qParam.order_by).name)
        if qParam.order_in == OrderIn.ASC:
            query = query.order_by(orderingAttribute.asc())
        else:
            query = query.order_by(orderingAttribute.desc())

        # Pagination
        users, pagination = paginate(query, qParam.page, qParam.limit)
        return makeResponse(
            {
                "items": jsonable_encoder(users, exclude={"password"}),
                "pagination": pagination,
            },
            "Users fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_account.get(
    URL_USER_BY_ID,
    tags=["User"],
    response_model=UserResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="Fetch an account below the authenticated account.",
)
async def fetch_user(user_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        manager = getters.principal(token, session)
        validators.role(manager, ACCOUNT_MANAGERS)

        user = manageableUser(session, manager, user_id)
        return makeResponse(jsonable_encoder(user, exclude={"password"}), "User fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_account.patch(
    URL_USER_BY_ID,
    tags=["User"],
    response_model=UserResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Update an account below the authenticated account.
    Suspending an account revokes all of its tokens.
    The manager cannot change its own status.
    """,
)
async def update_user(
    user_id: int = Path(ge=1),
    fParam: UpdateFormForManager = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        manager = getters.principal(token, session)
        validators.role(manager, ACCOUNT_MANAGERS)
        if user_id == manager.id:
            raise exceptions.NoPermission()

        user = manageableUser(session, manager, user_id)
        updateUser(session, user, fParam)
        haveUpdates = session.is_modified(user)
        if haveUpdates:
            session.commit()
            session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        if haveUpdates:
            logEvent(token, request_info, userData, manager)
        return makeResponse(userData, "User updated")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_account.delete(
    URL_USER_BY_ID,
    tags=["User"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Delete an account, only the master admin can delete accounts.
    Self-deletion is not allowed.
    References to the deleted account (creator, owner, booking owner) are set to null,
    nothing else is removed.
    """,
)
async def delete_user(
    user_id: int = Path(ge=1),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        manager = getters.principal(token, session)
        validators.role(manager, ACCOUNT_REMOVERS)
        if user_id == manager.id:
            raise exceptions.NoPermission()

        user = manageableUser(session, manager, user_id)
        session.delete(user)
        session.commit()
        logEvent(token, request_info, jsonable_encoder(user, exclude={"password"}), manager)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
