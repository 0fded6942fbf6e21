# app/system_services/order_services.py
import logging
from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.helpers.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.helpers.references import order_number
from app.prescription_engine import lifecycle
from app.prescription_engine.notifications import NotificationOutcome, PrescriptionNotifier
from app.prescription_engine.order_gate import CartLine, OrderGate
from app.system_models.order_model.order_model import Order, OrderItem
from app.system_models.order_model.order_schemas import OrderCreate
from app.system_models.prescription_model.prescription_model import Prescription
from app.system_models.product_model.product_model import Product
from app.system_services.prescription_services import commit_prescription
from app.users.user_models.user_model import User

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
CLOSED_STATUSES = ("delivered", "cancelled")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def price_order(subtotal: Decimal, tax_rate: float, free_shipping_threshold: float, shipping_fee: float):
    """Returns (subtotal, tax, shipping, total) rounded to cents."""
    subtotal = _money(subtotal)
    tax = _money(subtotal * Decimal(str(tax_rate)))
    shipping = Decimal("0.00") if subtotal >= _money(free_shipping_threshold) else _money(shipping_fee)
    return subtotal, tax, shipping, subtotal + tax + shipping


async def load_order(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = result.scalars().first()
    if not order:
        raise NotFoundError("Order not found")
    return order


async def _load_products(db: AsyncSession, data: OrderCreate) -> dict:
    wanted = Counter()
    for item in data.items:
        wanted[item.product_id] += item.quantity

    result = await db.execute(select(Product).where(Product.id.in_(list(wanted))))
    products = {product.id: product for product in result.scalars().all()}

    for product_id, quantity in wanted.items():
        product = products.get(product_id)
        if not product or not product.is_active:
            raise ValidationError.for_field("items", f"Product {product_id} not found or inactive")
        if product.available_stock < quantity:
            raise ValidationError.for_field("items", f"Insufficient stock for {product.name}")
    return products


async def _load_prescriptions(db: AsyncSession, data: OrderCreate, customer: User) -> List[Prescription]:
    ids = list(dict.fromkeys(data.prescription_ids))
    if not ids:
        return []

    result = await db.execute(select(Prescription).where(Prescription.id.in_(ids)))
    found = {p.id: p for p in result.scalars().all()}
    for prescription_id in ids:
        prescription = found.get(prescription_id)
        # Someone else's prescription is reported exactly like a missing one
        if not prescription or prescription.patient_id != customer.id:
            raise ValidationError.for_field("prescriptionIds", f"Prescription {prescription_id} not found")
    return [found[i] for i in ids]


# ============================================================
# ✅ CREATE ORDER
# ============================================================
async def create_order(
    db: AsyncSession,
    customer: User,
    data: OrderCreate,
    gate: OrderGate,
    notifier: PrescriptionNotifier,
    cfg,
) -> Tuple[Order, NotificationOutcome]:
    """
    Validate stock and the prescription gate for every line, then reserve
    stock and persist the order. Nothing is reserved unless every line passes.
    """
    products = await _load_products(db, data)
    prescriptions = await _load_prescriptions(db, data, customer)

    lines = [
        CartLine(
            product_id=item.product_id,
            name=products[item.product_id].name,
            prescription_required=products[item.product_id].prescription_required,
            quantity=item.quantity,
        )
        for item in data.items
    ]
    gate.check(lines, prescriptions, customer.id)

    subtotal = sum((_money(products[line.product_id].price) * line.quantity for line in lines), Decimal("0"))
    subtotal, tax, shipping, total = price_order(
        subtotal, cfg.TAX_RATE, cfg.FREE_SHIPPING_THRESHOLD, cfg.SHIPPING_FEE
    )

    for line in lines:
        products[line.product_id].stock_reserved += line.quantity

    order = Order(
        order_number=order_number(),
        customer_id=customer.id,
        status="pending",
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        total=total,
        shipping_address=data.shipping_address.model_dump(),
        customer_notes=data.customer_notes,
        items=[
            OrderItem(
                product_id=line.product_id,
                name=line.name,
                price=_money(products[line.product_id].price),
                quantity=line.quantity,
                prescription_required=line.prescription_required,
            )
            for line in lines
        ],
        prescriptions=prescriptions,
    )
    db.add(order)
    await commit_prescription(db)
    logger.info(f"🛒 Order {order.order_number} placed by {customer.email}: total {total}")

    order = await load_order(db, order.id)
    try:
        outcome = await notifier.order_confirmation(order, customer)
    except Exception as e:
        logger.error(f"❌ Confirmation e-mail for {order.order_number} failed: {e}")
        outcome = NotificationOutcome(attempted=1, failed=1, errors=[str(e)])
    return order, outcome


# ============================================================
# ✅ READ
# ============================================================
async def list_customer_orders(db: AsyncSession, customer: User) -> List[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.customer_id == customer.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(result.scalars().all())


async def get_order_for_user(db: AsyncSession, order_id: int, user: User) -> Order:
    order = await load_order(db, order_id)
    if order.customer_id != user.id and not user.is_staff:
        raise ForbiddenError("Not authorized to access this order")
    return order


# ============================================================
# ✅ STATUS UPDATE (staff)
# ============================================================
async def update_order_status(db: AsyncSession, order_id: int, status: str, staff: User) -> Order:
    order = await load_order(db, order_id)
    if order.status == status:
        return order
    if order.status in CLOSED_STATUSES:
        raise ConflictError(f"Order {order.order_number} is already {order.status}")

    products = {}
    if status in CLOSED_STATUSES:
        result = await db.execute(select(Product).where(Product.id.in_([i.product_id for i in order.items])))
        products = {product.id: product for product in result.scalars().all()}

    for item in order.items:
        product = products.get(item.product_id)
        if product is None:
            continue
        product.stock_reserved = max(0, product.stock_reserved - item.quantity)
        if status == "delivered":
            product.stock_quantity = max(0, product.stock_quantity - item.quantity)

    previous = order.status
    order.status = status

    if status == "delivered" and order.prescriptions:
        # Reload from the prescription side so each one carries all of its orders
        result = await db.execute(
            select(Prescription)
            .where(Prescription.id.in_([p.id for p in order.prescriptions]))
            .options(selectinload(Prescription.orders))
            .execution_options(populate_existing=True)
        )
        for prescription in result.scalars().all():
            if not isinstance(lifecycle.state_of(prescription), lifecycle.Verified):
                continue
            if all(linked.status == "delivered" for linked in prescription.orders):
                lifecycle.apply_transition(prescription, lifecycle.fulfil)

    await commit_prescription(db)
    logger.info(f"📦 Order {order.order_number}: {previous} -> {status} by {staff.email}")
    return await load_order(db, order.id)
