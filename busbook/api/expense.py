from datetime import datetime, timezone
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, Response, status, Form
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from busbook.api.bearer import bearer_user
from busbook.src.db import Bus, Expense, Trip, User, sessionMaker
from busbook.src import exceptions, schemas, validators, getters
from busbook.src.statistics import expenseScope
from busbook.src.loggers import logEvent
from busbook.src.enums import ExpenseStatus, ExpenseType, OrderIn, Role
from busbook.src.constants import EXPENSE_APPROVERS, EXPENSE_VIEWERS, EXPENSE_WRITERS
from busbook.src.functions import (
    enumStr,
    fuseExceptionResponses,
    makeResponse,
    paginate,
    toUTC,
    updateIfChanged,
)
from busbook.src.urls import (
    URL_EXPENSE,
    URL_EXPENSE_APPROVE,
    URL_EXPENSE_BY_ID,
    URL_EXPENSE_REJECT,
)

route_expense = APIRouter()

EXPENSE_TRANSITIONS = {
    ExpenseStatus.PENDING: [ExpenseStatus.APPROVED, ExpenseStatus.REJECTED],
    ExpenseStatus.APPROVED: [],
    ExpenseStatus.REJECTED: [],
}


## Output Schema
class ExpenseSchema(BaseModel):
    id: int
    bus_id: int
    trip_id: Optional[int]
    employee_id: Optional[int]
    expense_type: int
    amount: float
    description: str
    expense_date: datetime
    receipt_number: Optional[str]
    status: int
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    rejection_reason: Optional[str]
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class ExpenseResponse(schemas.Response):
    data: ExpenseSchema


class ExpenseListData(BaseModel):
    items: List[ExpenseSchema]
    pagination: schemas.Pagination


class ExpenseListResponse(schemas.Response):
    data: ExpenseListData


## Input Forms
class CreateForm(BaseModel):
    bus_id: int = Field(Form())
    trip_id: int | None = Field(Form(default=None))
    employee_id: int | None = Field(
        Form(default=None, description="Defaults to the submitting bus employee")
    )
    expense_type: ExpenseType = Field(Form(description=enumStr(ExpenseType)))
    amount: float = Field(Form(ge=0))
    description: str = Field(Form(min_length=1, max_length=1024))
    expense_date: datetime | None = Field(Form(default=None))
    receipt_number: str | None = Field(Form(max_length=64, default=None))


class UpdateForm(BaseModel):
    expense_type: ExpenseType | None = Field(
        Form(description=enumStr(ExpenseType), default=None)
    )
    amount: float | None = Field(Form(ge=0, default=None))
    description: str | None = Field(Form(min_length=1, max_length=1024, default=None))
    expense_date: datetime | None = Field(Form(default=None))
    receipt_number: str | None = Field(Form(max_length=64, default=None))


class RejectForm(BaseModel):
    rejection_reason: str = Field(Form(min_length=1, max_length=512))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    amount = 2
    expense_date = 3
    created_on = 4


class QueryParams(BaseModel):
    # filters
    bus_id: int | None = Field(Query(default=None))
    trip_id: int | None = Field(Query(default=None))
    employee_id: int | None = Field(Query(default=None))
    expense_type: ExpenseType | None = Field(
        Query(default=None, description=enumStr(ExpenseType))
    )
    status: ExpenseStatus | None = Field(
        Query(default=None, description=enumStr(ExpenseStatus))
    )
    # amount based
    amount_ge: float | None = Field(Query(default=None))
    amount_le: float | None = Field(Query(default=None))
    # expense_date based
    expense_date_ge: datetime | None = Field(Query(default=None))
    expense_date_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=10, ge=1, le=100))


## Function
def visibleExpense(session: Session, user: User, expense_id: int) -> Expense:
    expense = (
        session.query(Expense)
        .filter(Expense.id == expense_id, *expenseScope(session, user))
        .first()
    )
    if expense is None:
        raise exceptions.InvalidIdentifier()
    return expense


def editableExpense(session: Session, user: User, expense_id: int) -> Expense:
    """
    Fetch an expense which is still open for changes by the account.

    Employees only change the expenses they submitted, fleet managers change
    any expense of their buses.
    """
    expense = visibleExpense(session, user, expense_id)
    if user.role == Role.BUS_EMPLOYEE and expense.created_by != user.id:
        raise exceptions.NoPermission()
    if expense.status != ExpenseStatus.PENDING:
        raise exceptions.InvalidStateTransition(Expense.status)
    return expense


def decide(session: Session, user: User, expense_id: int, decision: ExpenseStatus):
    expense = visibleExpense(session, user, expense_id)
    validators.stateTransition(
        EXPENSE_TRANSITIONS, expense.status, decision, Expense.status
    )
    expense.status = decision
    expense.approved_by = user.id
    expense.approved_at = datetime.now(timezone.utc)
    return expense


def searchExpense(session: Session, qParam: QueryParams, conditions: list) -> tuple:
    query = session.query(Expense).filter(*conditions)

    # Filters
    if qParam.bus_id is not None:
        query = query.filter(Expense.bus_id == qParam.bus_id)
    if qParam.trip_id is not None:
        query = query.filter(Expense.trip_id == qParam.trip_id)
    if qParam.employee_id is not None:
        query = query.filter(Expense.employee_id == qParam.employee_id)
    if qParam.expense_type is not None:
        query = query.filter(Expense.expense_type == qParam.expense_type)
    if qParam.status is not None:
        query = query.filter(Expense.status == qParam.status)
    # amount based
    if qParam.amount_ge is not None:
        query = query.filter(Expense.amount >= qParam.amount_ge)
    if qParam.amount_le is not None:
        query = query.filter(Expense.amount <= qParam.amount_le)
    # expense_date based
    if qParam.expense_date_ge is not None:
        query = query.filter(Expense.expense_date >= qParam.expense_date_ge)
    if qParam.expense_date_le is not None:
        query = query.filter(Expense.expense_date <= qParam.expense_date_le)

    # Ordering
    orderingAttribute = getattr(Expense, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    return paginate(query, qParam.page, qParam.limit)


## API endpoints
@route_expense.post(
    URL_EXPENSE,
    tags=["Expense"],
    response_model=ExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(Expense.bus_id),
            exceptions.InvalidAssociation(Expense.trip_id, Expense.bus_id),
        ]
    ),
    description="""
    Record an expense of a bus, optionally tied to a trip of that bus.
    The bus must belong to the bus owner the account works for.
    Expenses submitted by a bus employee are recorded against that employee.
    Every expense starts pending.
    """,
)
async def create_expense(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_WRITERS)
        ownerId = getters.ownerId(user, session)

        bus = session.query(Bus).filter(Bus.id == fParam.bus_id).first()
        if bus is None or bus.owner_id != ownerId:
            raise exceptions.UnknownValue(Expense.bus_id)
        if fParam.trip_id is not None:
            trip = session.query(Trip).filter(Trip.id == fParam.trip_id).first()
            if trip is None:
                raise exceptions.UnknownValue(Expense.trip_id)
            if trip.bus_id != bus.id:
                raise exceptions.InvalidAssociation(Expense.trip_id, Expense.bus_id)

        employee_id = fParam.employee_id
        if user.role == Role.BUS_EMPLOYEE:
            if employee_id is not None and employee_id != user.id:
                raise exceptions.UnexpectedParameter(Expense.employee_id)
            employee_id = user.id
        elif employee_id is not None:
            employee = session.query(User).filter(User.id == employee_id).first()
            if (
                employee is None
                or employee.role != Role.BUS_EMPLOYEE
                or getters.ownerId(employee, session) != ownerId
            ):
                raise exceptions.UnknownValue(Expense.employee_id)

        expense = Expense(
            bus_id=bus.id,
            trip_id=fParam.trip_id,
            employee_id=employee_id,
            expense_type=fParam.expense_type,
            amount=fParam.amount,
            description=fParam.description,
            expense_date=toUTC(fParam.expense_date) or datetime.now(timezone.utc),
            receipt_number=fParam.receipt_number,
            status=ExpenseStatus.PENDING,
            created_by=user.id,
        )
        session.add(expense)
        session.commit()
        session.refresh(expense)

        expenseData = jsonable_encoder(expense)
        logEvent(token, request_info, expenseData, user)
        return makeResponse(expenseData, "Expense created")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_expense.get(
    URL_EXPENSE,
    tags=["Expense"],
    response_model=ExpenseListResponse,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the expenses visible to the account.
    Bus owners and bus admins see the expenses of their buses,
    bus employees see the expenses they submitted or are recorded against.
    Paginate using page and limit.
    """,
)
async def fetch_expenses(qParam: QueryParams = Depends(), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_VIEWERS)

        expenses, pagination = searchExpense(
            session, qParam, expenseScope(session, user)
        )
        return makeResponse(
            {"items": jsonable_encoder(expenses), "pagination": pagination},
            "Expenses fetched",
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_expense.get(
    URL_EXPENSE_BY_ID,
    tags=["Expense"],
    response_model=ExpenseResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="Fetch an expense visible to the account.",
)
async def fetch_expense(expense_id: int = Path(ge=1), bearer=Depends(bearer_user)):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_VIEWERS)

        expense = visibleExpense(session, user, expense_id)
        return makeResponse(jsonable_encoder(expense), "Expense fetched")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_expense.put(
    URL_EXPENSE_BY_ID,
    tags=["Expense"],
    response_model=ExpenseResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidStateTransition(Expense.status),
        ]
    ),
    description="""
    Update a pending expense.
    Bus employees update only the expenses they submitted.
    Approved and rejected expenses cannot be changed.
    """,
)
async def update_expense(
    expense_id: int = Path(ge=1),
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_WRITERS)

        expense = editableExpense(session, user, expense_id)
        fParam.expense_date = toUTC(fParam.expense_date)
        updateIfChanged(
            expense,
            fParam,
            [
                Expense.expense_type.key,
                Expense.amount.key,
                Expense.description.key,
                Expense.expense_date.key,
                Expense.receipt_number.key,
            ],
        )
        haveUpdates = session.is_modified(expense)
        if haveUpdates:
            session.commit()
            session.refresh(expense)

        expenseData = jsonable_encoder(expense)
        if haveUpdates:
            logEvent(token, request_info, expenseData, user)
        return makeResponse(expenseData, "Expense updated")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_expense.delete(
    URL_EXPENSE_BY_ID,
    tags=["Expense"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidStateTransition(Expense.status),
        ]
    ),
    description="""
    Delete a pending expense.
    Bus employees delete only the expenses they submitted.
    """,
)
async def delete_expense(
    expense_id: int = Path(ge=1),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_WRITERS)

        expense = editableExpense(session, user, expense_id)
        session.delete(expense)
        session.commit()
        logEvent(token, request_info, jsonable_encoder(expense), user)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_expense.put(
    URL_EXPENSE_APPROVE,
    tags=["Expense"],
    response_model=ExpenseResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidStateTransition(Expense.status),
        ]
    ),
    description="""
    Approve a pending expense of the fleet.
    The approver and the time of approval are recorded.
    """,
)
async def approve_expense(
    expense_id: int = Path(ge=1),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_APPROVERS)

        expense = decide(session, user, expense_id, ExpenseStatus.APPROVED)
        session.commit()
        session.refresh(expense)

        expenseData = jsonable_encoder(expense)
        logEvent(token, request_info, expenseData, user)
        return makeResponse(expenseData, "Expense approved")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_expense.put(
    URL_EXPENSE_REJECT,
    tags=["Expense"],
    response_model=ExpenseResponse,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidStateTransition(Expense.status),
        ]
    ),
    description="""
    Reject a pending expense of the fleet with a reason.
    The reviewer and the time of rejection are recorded.
    """,
)
async def reject_expense(
    expense_id: int = Path(ge=1),
    fParam: RejectForm = Depends(),
    bearer=Depends(bearer_user),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        token = validators.userToken(bearer.credentials, session)
        user = getters.principal(token, session)
        validators.role(user, EXPENSE_APPROVERS)

        expense = decide(session, user, expense_id, ExpenseStatus.REJECTED)
        expense.rejection_reason = fParam.rejection_reason
        session.commit()
        session.refresh(expense)

        expenseData = jsonable_encoder(expense)
        logEvent(token, request_info, expenseData, user)
        return makeResponse(expenseData, "Expense rejected")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
