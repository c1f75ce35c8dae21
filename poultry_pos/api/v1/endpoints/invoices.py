from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from poultry_pos.api.deps import get_invoice_repository, get_transaction_service
from poultry_pos.core.errors import NotFoundError
from poultry_pos.models.invoice import Invoice
from poultry_pos.repositories.invoice_repo import InvoiceRepository
from poultry_pos.schemas.invoice import InvoiceCreate, InvoiceDetails, InvoiceEdit, InvoiceUpdate
from poultry_pos.schemas.transaction import TransactionResult
from poultry_pos.services.transaction_service import TransactionService

router = APIRouter()


def _raise_for_failure(result: TransactionResult) -> None:
    if result.success:
        return
    if result.validation_errors:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.validation_errors)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)


@router.post("/", response_model=TransactionResult, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_in: InvoiceCreate,
    service: TransactionService = Depends(get_transaction_service),
):
    """Commit an invoice together with the payment taken at the counter"""
    draft = service.new_draft(invoice_in.customer_id, invoice_in.truck_id, invoice_in.invoice_date)
    result = await service.create_invoice_with_payment(
        draft,
        [item.to_line_item() for item in invoice_in.items],
        payment_amount=invoice_in.payment_amount,
        payment_method=invoice_in.payment_method,
        notes=invoice_in.notes,
    )
    _raise_for_failure(result)
    return result

@router.put("/{invoice_id}", response_model=TransactionResult)
async def update_invoice(
    invoice_id: str,
    invoice_in: InvoiceUpdate,
    service: TransactionService = Depends(get_transaction_service),
    invoices: InvoiceRepository = Depends(get_invoice_repository),
):
    """Rewrite an invoice and move the customer's balance by the difference"""
    if await invoices.get_by_id(invoice_id) is None:
        raise HTTPException(status_code=404, detail="Invoice not found")

    result = await service.update_invoice(
        invoice_id,
        [item.to_line_item() for item in invoice_in.items],
        payment_amount=invoice_in.payment_amount,
        payment_method=invoice_in.payment_method,
        notes=invoice_in.notes,
    )
    _raise_for_failure(result)
    return result

@router.get("/{invoice_id}", response_model=InvoiceDetails)
async def get_invoice(
    invoice_id: str,
    invoices: InvoiceRepository = Depends(get_invoice_repository),
):
    """Get an invoice with its customer name and payments"""
    details = await invoices.get_with_details(invoice_id)
    if not details:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return details

@router.get("/{invoice_id}/edit", response_model=InvoiceEdit)
async def load_invoice_for_edit(
    invoice_id: str,
    service: TransactionService = Depends(get_transaction_service),
):
    """Get an invoice with the line item its edit form starts from"""
    try:
        invoice, line_item = await service.load_invoice_for_edit(invoice_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return InvoiceEdit(invoice=invoice, line_item=line_item)

@router.get("/", response_model=List[Invoice])
async def search_invoices(
    term: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    invoices: InvoiceRepository = Depends(get_invoice_repository),
):
    """Search invoices by number or customer name"""
    return await invoices.search(term, start, end, limit)
