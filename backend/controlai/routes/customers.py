from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from controlai.core.database import get_db
from controlai.core.deps import get_current_user
from controlai.models.customer import Customer
from controlai.models.sale import Sale, SaleStatus
from controlai.models.user import User
from controlai.routes.sales import SaleOut


router = APIRouter()


def _normalize_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class CustomerIn(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    document: Optional[str] = None
    phone: Optional[str] = None


class CustomerOut(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    document: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerDetail(CustomerOut):
    total_purchases: int = 0
    total_spent: Decimal = Decimal("0")
    last_purchase_at: Optional[datetime] = None


class PurchasesOut(BaseModel):
    success: bool = True
    count: int
    total: int
    pages: int
    data: List[SaleOut]


def _get_customer(db: Session, customer_id: int) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Cliente não encontrado")
    return customer


@router.get("/", response_model=List[CustomerOut])
def list_customers(
    search: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Customer)
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Customer.name).like(term),
                func.lower(Customer.email).like(term),
                Customer.document.like(term),
                Customer.phone.like(term),
            )
        )
    return query.order_by(Customer.name.asc()).offset(skip).limit(limit).all()


@router.post("/", response_model=CustomerOut)
def create_customer(
    data: CustomerIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    name = _normalize_text(data.name)
    if not name:
        raise HTTPException(status_code=400, detail="Nome do cliente é obrigatório")

    customer = Customer(
        name=name,
        email=_normalize_text(data.email),
        document=_normalize_text(data.document),
        phone=_normalize_text(data.phone),
    )
    db.add(customer)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        msg = str(e.orig)
        if "email" in msg:
            raise HTTPException(status_code=400, detail="Email já cadastrado para outro cliente")
        if "document" in msg:
            raise HTTPException(status_code=400, detail="Documento já cadastrado para outro cliente")
        raise HTTPException(status_code=400, detail="Dados do cliente inválidos")
    db.refresh(customer)
    return customer


@router.get("/{customer_id}", response_model=CustomerDetail)
def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Customer record plus an aggregate of its non-cancelled purchases."""
    customer = _get_customer(db, customer_id)
    count, spent, last = (
        db.query(func.count(Sale.id), func.coalesce(func.sum(Sale.total), 0), func.max(Sale.created_at))
        .filter(Sale.customer_id == customer.id, Sale.status != SaleStatus.cancelled.value)
        .one()
    )
    detail = CustomerDetail.model_validate(customer)
    detail.total_purchases = count
    detail.total_spent = Decimal(str(spent))
    detail.last_purchase_at = last
    return detail


@router.get("/{customer_id}/purchases", response_model=PurchasesOut)
def get_customer_purchases(
    customer_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    customer = _get_customer(db, customer_id)
    query = db.query(Sale).filter(Sale.customer_id == customer.id)
    total = query.count()
    sales = (
        query.options(selectinload(Sale.items))
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return PurchasesOut(count=len(sales), total=total, pages=-(-total // limit), data=sales)
