from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, condecimal
from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from controlai.core.database import get_db
from controlai.core.deps import get_current_user, require_admin
from controlai.models.product import Product
from controlai.models.user import User


router = APIRouter()


class ProductBase(BaseModel):
    name: str
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: condecimal(max_digits=10, decimal_places=2) = 0
    cost_price: condecimal(max_digits=10, decimal_places=2) = 0
    stock: int = 0
    category: Optional[str] = None
    active: bool = True


class ProductOut(ProductBase):
    id: int

    class Config:
        from_attributes = True


def _apply(product: Product, data: ProductBase) -> None:
    for field, value in data.model_dump().items():
        setattr(product, field, value)


def _commit_product(db: Session, product: Product) -> Product:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        msg = str(e.orig)
        if "sku" in msg:
            raise HTTPException(status_code=400, detail="SKU já cadastrado")
        if "barcode" in msg:
            raise HTTPException(status_code=400, detail="Código de barras já cadastrado")
        if "stock" in msg:
            raise HTTPException(status_code=400, detail="Estoque não pode ser negativo")
        raise HTTPException(status_code=400, detail="Dados do produto inválidos")
    db.refresh(product)
    return product


@router.get("/", response_model=List[ProductOut])
def list_products(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    q: Optional[str] = Query(None, description="Search by name, SKU or barcode"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    active: Optional[bool] = Query(None, description="Filter by active status"),
):
    logging.getLogger(__name__).info("list_products q=%s skip=%s limit=%s", q, skip, limit)
    query = db.query(Product)
    if q:
        qn = q.strip().lower()
        if qn:
            query = query.filter(
                or_(
                    func.lower(Product.name).like(f"%{qn}%"),
                    func.lower(Product.sku).like(f"%{qn}%"),
                    Product.barcode == q.strip(),
                    func.lower(Product.category).like(f"%{qn}%"),
                )
            )
    if active is not None:
        query = query.filter(Product.active == active)
    return query.order_by(Product.name.asc()).offset(skip).limit(limit).all()


@router.post("/", response_model=ProductOut, dependencies=[Depends(require_admin)])
def create_product(data: ProductBase, db: Session = Depends(get_db)):
    if data.stock < 0:
        raise HTTPException(status_code=400, detail="Estoque não pode ser negativo")
    product = Product()
    _apply(product, data)
    db.add(product)
    return _commit_product(db, product)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    return product


@router.put("/{product_id}", response_model=ProductOut, dependencies=[Depends(require_admin)])
def update_product(product_id: int, data: ProductBase, db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    if data.stock < 0:
        raise HTTPException(status_code=400, detail="Estoque não pode ser negativo")
    _apply(product, data)
    return _commit_product(db, product)
