from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status

from poultry_pos.api.deps import get_customer_service, get_payment_repository, get_transaction_service
from poultry_pos.core.config import settings
from poultry_pos.core.errors import NotFoundError
from poultry_pos.repositories.payment_repo import PaymentRepository
from poultry_pos.schemas.payment import BulkPaymentRequest, PaymentSummaryResponse, QuickPaymentRequest
from poultry_pos.schemas.transaction import BulkPaymentSummary, TransactionResult
from poultry_pos.services.customer_service import CustomerService
from poultry_pos.services.transaction_service import TransactionService

router = APIRouter()


async def _bulk_targets(request: BulkPaymentRequest, customers: CustomerService):
    if not request.customer_ids:
        return await customers.list_with_debt()
    try:
        return [await customers.get(customer_id) for customer_id in request.customer_ids]
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.post("/quick", response_model=TransactionResult)
async def quick_payment(
    payment_in: QuickPaymentRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    """Record an on-account payment against a customer's debt"""
    result = await service.quick_payment(
        payment_in.customer_id,
        amount=payment_in.amount,
        percentage=payment_in.percentage,
        payment_method=payment_in.payment_method,
        notes=payment_in.notes,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return result

@router.post("/bulk-settle", response_model=BulkPaymentSummary)
async def bulk_settle(
    request: BulkPaymentRequest,
    service: TransactionService = Depends(get_transaction_service),
    customers: CustomerService = Depends(get_customer_service),
):
    """Settle the full debt of the listed customers (all debtors when none are listed)"""
    summary = await service.bulk_settle_debt(await _bulk_targets(request, customers))
    if not summary.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=summary.message)
    return summary

@router.post("/bulk-partial", response_model=BulkPaymentSummary)
async def bulk_partial(
    request: BulkPaymentRequest,
    service: TransactionService = Depends(get_transaction_service),
    customers: CustomerService = Depends(get_customer_service),
):
    """Pay a fraction of each listed customer's debt"""
    summary = await service.bulk_partial_payment(
        await _bulk_targets(request, customers),
        request.fraction if request.fraction is not None else settings.BULK_PARTIAL_FRACTION,
    )
    if not summary.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=summary.message)
    return summary

@router.get("/summary", response_model=PaymentSummaryResponse)
async def payment_summary(
    start: datetime,
    end: datetime,
    payments: PaymentRepository = Depends(get_payment_repository),
):
    """Total and count of payments in a date range"""
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    total, count = await payments.summary_in_range(start, end)
    return PaymentSummaryResponse(total_amount=total, payment_count=count)
