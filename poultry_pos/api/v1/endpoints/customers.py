from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from poultry_pos.api.deps import get_customer_service, get_transaction_service
from poultry_pos.core.errors import CustomerValidationError, NotFoundError
from poultry_pos.schemas.customer import (
    CustomerCreate,
    CustomerPage,
    CustomerResponse,
    CustomerUpdate,
    TransactionSummary,
)
from poultry_pos.services.customer_service import CustomerService
from poultry_pos.services.transaction_service import TransactionService

router = APIRouter()


@router.post("/", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_in: CustomerCreate,
    service: CustomerService = Depends(get_customer_service),
):
    """Create a customer"""
    try:
        customer = await service.create_customer(customer_in)
    except CustomerValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors)
    return CustomerResponse.from_customer(customer)

@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: str,
    customer_in: CustomerUpdate,
    service: CustomerService = Depends(get_customer_service),
):
    """Update a customer's contact details"""
    try:
        customer = await service.update_customer(customer_id, customer_in)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Customer not found")
    except CustomerValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors)
    return CustomerResponse.from_customer(customer)

@router.get("/", response_model=CustomerPage)
async def list_customers(
    term: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    service: CustomerService = Depends(get_customer_service),
):
    """Active customers, searchable by name or phone"""
    customers, total = await service.find_active(term, page, page_size)
    return CustomerPage(
        items=[CustomerResponse.from_customer(c) for c in customers],
        total=total,
        page=page,
        page_size=page_size,
    )

@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
):
    """Get a customer by ID"""
    try:
        return CustomerResponse.from_customer(await service.get(customer_id))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Customer not found")

@router.get("/{customer_id}/summary", response_model=TransactionSummary)
async def get_customer_summary(
    customer_id: str,
    service: TransactionService = Depends(get_transaction_service),
):
    """Balance, sales and payment totals for a customer"""
    try:
        return await service.get_transaction_summary(customer_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Customer not found")

@router.post("/{customer_id}/recalculate")
async def recalculate_balance(
    customer_id: str,
    service: TransactionService = Depends(get_transaction_service),
):
    """Rebuild the balance from invoices and payments and fix any drift"""
    try:
        result = await service.recalculate_customer_balance(customer_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Customer not found")
    return {
        "customer_id": str(result.customer.id),
        "stored_balance": str(result.stored_balance),
        "calculated_balance": str(result.calculated_balance),
        "corrected": result.discrepancy != 0,
    }

@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
):
    """Delete a customer, or deactivate one that has transaction history"""
    try:
        deleted = await service.delete_customer(customer_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Customer not found")
    if deleted:
        return {"message": "Customer deleted"}
    return {"message": "Customer has transaction history and was deactivated"}
