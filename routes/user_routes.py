from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from db.config import get_mysql_session
from models.schemas import (
    UserCreateRequest,
    UserResponse,
    CreditRequest,
    TransactionHistoryResponse,
)
from services.ledger_service import LedgerService

router = APIRouter(prefix="/users", tags=["Users"])


def get_ledger_service(session: Session = Depends(get_mysql_session)) -> LedgerService:
    return LedgerService(session)


@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create user account",
    description="Creates a coin ledger account with its slot limits"
)
def create_user(
    request: UserCreateRequest,
    service: LedgerService = Depends(get_ledger_service)
):
    if service.get_user_by_username(request.username):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username already exists"
        )

    return service.create_user(**request.model_dump())


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get user account"
)
def get_user(
    user_id: str,
    service: LedgerService = Depends(get_ledger_service)
):
    result = service.get_user(user_id)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return result


@router.get(
    "/{user_id}/balance",
    response_model=dict,
    summary="Get coin balance"
)
def get_balance(
    user_id: str,
    service: LedgerService = Depends(get_ledger_service)
):
    balance = service.get_balance(user_id)
    if balance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return {"user_id": user_id, "coins": balance}


@router.post(
    "/{user_id}/credit",
    response_model=dict,
    summary="Add coins",
    description="Credits coins to a user and records the transaction"
)
def add_credit(
    user_id: str,
    request: CreditRequest,
    service: LedgerService = Depends(get_ledger_service)
):
    result = service.add_credit(user_id, request.amount, request.type, request.description)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return result


@router.get(
    "/{user_id}/transactions",
    response_model=TransactionHistoryResponse,
    summary="Get transaction history"
)
def get_transactions(
    user_id: str,
    limit: int = Query(100, ge=1, le=1000),
    service: LedgerService = Depends(get_ledger_service)
):
    result = service.get_transaction_history(user_id, limit=limit)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return result
