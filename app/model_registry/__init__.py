# app/model_registry/__init__.py


# Register all models here

# User models
from app.users.user_models.user_model import User
from app.users.auth_token_model.token_model import Token

# Catalog
from app.system_models.product_model.product_model import Product

# Prescriptions & orders
from app.system_models.prescription_model.prescription_model import (
    Prescription,
    PrescriptionImage,
    PrescriptionMedication,
)
from app.system_models.order_model.order_model import Order, OrderItem
