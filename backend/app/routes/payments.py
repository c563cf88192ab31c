"""
Payment API Routes

- Transaction history for a user (as payer or coach)
- Early payout requests for coaches

Authentication is handled upstream by the gateway; these routes take the
user id from the path.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..core.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from ..core.exceptions import DomainException
from ..database import get_db
from ..schemas.payment_schemas import (
    EarlyPayoutRequest,
    EarlyPayoutResponse,
    TransactionHistoryResponse,
    TransactionResponse,
)
from ..services.payout_service import PayoutService
from ..services.session_payment_service import SessionPaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


def get_session_payment_service(db: Session = Depends(get_db)) -> SessionPaymentService:
    return SessionPaymentService(db)


def get_payout_service(db: Session = Depends(get_db)) -> PayoutService:
    return PayoutService(db)


@router.get("/users/{user_id}/transactions", response_model=TransactionHistoryResponse)
async def get_transaction_history(
    user_id: str,
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    offset: int = Query(0, ge=0),
    payment_service: SessionPaymentService = Depends(get_session_payment_service),
) -> TransactionHistoryResponse:
    """Transactions the user paid or was paid for, newest first."""
    try:
        transactions = await run_in_threadpool(
            payment_service.get_user_transaction_history, user_id, limit, offset
        )
    except DomainException as e:
        raise e.to_http_exception()

    return TransactionHistoryResponse(
        items=[TransactionResponse.model_validate(t) for t in transactions],
        limit=limit,
        offset=offset,
    )


@router.post("/coaches/{coach_id}/early-payout", response_model=EarlyPayoutResponse)
async def request_early_payout(
    coach_id: str,
    payload: EarlyPayoutRequest,
    payout_service: PayoutService = Depends(get_payout_service),
) -> EarlyPayoutResponse:
    """
    Pay a coach ahead of the scheduled run, less the early payout fee.

    Raises:
        HTTPException: 422 when the amount exceeds the available balance or
            the early payout limit is reached, 404 without a connected account,
            402 when Stripe rejects the transfer
    """
    try:
        result = await run_in_threadpool(
            payout_service.request_early_payout, coach_id, payload.amount, payload.currency
        )
    except DomainException as e:
        logger.warning(f"Early payout for coach {coach_id} rejected: {e.message}")
        raise e.to_http_exception()
    except Exception as e:
        logger.error(f"Unexpected error requesting early payout: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Early payout failed"
        )

    return EarlyPayoutResponse(
        transfer_id=result.transfer_id,
        original_amount=result.original_amount,
        fee_amount=result.fee_amount,
        payout_amount=result.payout_amount,
        currency=result.currency,
        transaction_id=result.transaction.id,
    )
