# app/system_services/order_routes.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.prescription_engine.notifications import PrescriptionNotifier
from app.prescription_engine.order_gate import OrderGate
from app.prescription_engine.providers import get_notifier, get_order_gate, get_prescription_settings
from app.system_models.order_model.order_schemas import OrderCreate, OrderResponse, OrderStatusUpdate
from app.system_services import order_services
from app.users.auth_dependencies import get_current_staff, get_current_user
from app.users.user_models.user_model import User
from config.prescriptionconfig import PrescriptionSettings

router = APIRouter()


# ============================================================
# ✅ PLACE ORDER (prescription gate applies)
# ============================================================
@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    data: OrderCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gate: OrderGate = Depends(get_order_gate),
    notifier: PrescriptionNotifier = Depends(get_notifier),
    cfg: PrescriptionSettings = Depends(get_prescription_settings),
):
    order, _ = await order_services.create_order(db, current_user, data, gate, notifier, cfg)
    return OrderResponse.from_record(order)


@router.get("", response_model=List[OrderResponse])
async def my_orders(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    orders = await order_services.list_customer_orders(db, current_user)
    return [OrderResponse.from_record(order) for order in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_services.get_order_for_user(db, order_id, current_user)
    return OrderResponse.from_record(order)


# ============================================================
# ✅ STAFF: STATUS
# ============================================================
@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    staff: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    order = await order_services.update_order_status(db, order_id, data.status, staff)
    return OrderResponse.from_record(order)
