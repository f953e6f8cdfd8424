"""
Serviço de negócio para vendas.
Criação com baixa de estoque e cancelamento com devolução do estoque.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from controlai.core.errors import BadRequestError, NotFoundError
from controlai.models.customer import Customer
from controlai.models.product import Product
from controlai.models.sale import Sale, SaleItem, SaleStatus
from controlai.models.user import User


def get_sale(db: Session, sale_id: int) -> Sale:
    sale = (
        db.query(Sale)
        .options(selectinload(Sale.items), selectinload(Sale.customer))
        .filter(Sale.id == sale_id)
        .first()
    )
    if not sale:
        raise NotFoundError("Venda não encontrada")
    return sale


def list_sales(db: Session, status: Optional[str] = None, skip: int = 0, limit: int = 50) -> List[Sale]:
    query = db.query(Sale).options(selectinload(Sale.items), selectinload(Sale.customer))
    if status:
        query = query.filter(Sale.status == status)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(skip).limit(limit).all()


def create_sale(
    db: Session,
    seller: User,
    items: List[Dict[str, Any]],
    customer_id: Optional[int] = None,
    discount: Decimal = Decimal("0"),
    tax: Decimal = Decimal("0"),
    notes: Optional[str] = None,
) -> Sale:
    """
    Cria uma venda e baixa o estoque dos produtos.

    Args:
        items: Lista de dicts com 'product_id', 'quantity' e 'discount' (opcional)

    Raises:
        NotFoundError: produto ou cliente inexistente
        BadRequestError: estoque insuficiente ou venda sem itens

    Tudo roda em uma única transação: qualquer falha desfaz a baixa de estoque.
    """
    if not items:
        raise BadRequestError("A venda deve conter ao menos um item")

    try:
        if customer_id is not None and not db.get(Customer, customer_id):
            raise NotFoundError("Cliente não encontrado")

        sale = Sale(
            customer_id=customer_id,
            seller_id=seller.id,
            discount=discount or Decimal("0"),
            tax=tax or Decimal("0"),
            notes=notes,
            status=SaleStatus.pending.value,
        )
        for entry in items:
            product_id = entry["product_id"]
            quantity = int(entry["quantity"])
            product = (
                db.query(Product)
                .filter(Product.id == product_id)
                .with_for_update()
                .first()
            )
            if not product:
                raise NotFoundError(f"Produto {product_id} não encontrado")
            if quantity > product.stock:
                raise BadRequestError(f"Estoque insuficiente para o produto {product.name}")

            product.stock -= quantity
            sale.items.append(SaleItem(
                product_id=product.id,
                name=product.name,
                quantity=quantity,
                unit_price=product.price,
                discount=entry.get("discount") or Decimal("0"),
            ))

        sale.recalculate_totals()
        if sale.total < 0:
            raise BadRequestError("Total da venda não pode ser negativo")
        db.add(sale)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(sale)
    return sale


def cancel_sale(db: Session, sale_id: int) -> Sale:
    sale = get_sale(db, sale_id)
    if sale.status == SaleStatus.cancelled.value:
        raise BadRequestError("Venda já está cancelada")

    try:
        for item in sale.items:
            if item.product_id is None:
                continue
            product = db.query(Product).filter(Product.id == item.product_id).with_for_update().first()
            if product:
                product.stock += item.quantity
        sale.status = SaleStatus.cancelled.value
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(sale)
    return sale
