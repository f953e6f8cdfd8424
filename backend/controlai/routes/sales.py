from typing import List, Optional
from decimal import Decimal
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, condecimal, field_validator
from sqlalchemy.orm import Session

from controlai.core.database import get_db
from controlai.core.deps import get_current_user, require_admin
from controlai.core.errors import bad_request_on_error
from controlai.models.sale import SaleStatus
from controlai.models.user import User
from controlai.services import sale_service


router = APIRouter()


class SaleItemIn(BaseModel):
    product_id: int
    quantity: int
    discount: condecimal(max_digits=10, decimal_places=2) = Decimal("0")

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Quantidade deve ser maior que zero")
        return value


class SaleCreate(BaseModel):
    items: List[SaleItemIn]
    customer_id: Optional[int] = None
    discount: condecimal(max_digits=10, decimal_places=2) = Decimal("0")
    tax: condecimal(max_digits=10, decimal_places=2) = Decimal("0")
    notes: Optional[str] = None


class SaleOutItem(BaseModel):
    product_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: condecimal(max_digits=10, decimal_places=2)
    discount: condecimal(max_digits=10, decimal_places=2)
    total: condecimal(max_digits=10, decimal_places=2)

    class Config:
        from_attributes = True


class SaleOut(BaseModel):
    id: int
    customer_id: Optional[int] = None
    seller_id: Optional[int] = None
    subtotal: condecimal(max_digits=10, decimal_places=2)
    discount: condecimal(max_digits=10, decimal_places=2)
    tax: condecimal(max_digits=10, decimal_places=2)
    total: condecimal(max_digits=10, decimal_places=2)
    status: str
    notes: Optional[str] = None
    created_at: datetime
    items: List[SaleOutItem]

    class Config:
        from_attributes = True


@router.post("/", response_model=SaleOut)
def create_sale(
    data: SaleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with bad_request_on_error("creating sale"):
        return sale_service.create_sale(
            db,
            user,
            [item.model_dump() for item in data.items],
            customer_id=data.customer_id,
            discount=data.discount,
            tax=data.tax,
            notes=data.notes,
        )


@router.get("/", response_model=List[SaleOut])
def list_sales(
    status: Optional[SaleStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return sale_service.list_sales(db, status.value if status else None, skip, limit)


@router.get("/{sale_id}", response_model=SaleOut)
def get_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return sale_service.get_sale(db, sale_id)


@router.patch("/{sale_id}/cancel", response_model=SaleOut, dependencies=[Depends(require_admin)])
def cancel_sale(sale_id: int, db: Session = Depends(get_db)):
    with bad_request_on_error("cancelling sale"):
        return sale_service.cancel_sale(db, sale_id)
