# app/main.py
from dotenv import load_dotenv

load_dotenv()

import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from config.appconfig import settings

# Apply logging configuration
logging.config.dictConfig(settings.LOGGING_CONFIG)

from app.database.connection import init_db
from app.helpers.exception_handlers import register_exception_handlers

# Import routers
from app.system_services.order_routes import router as order_router
from app.system_services.prescription_routes import router as prescription_router
from app.users.auth_routers import router as auth_router

# Import configurations
from config.prescriptionconfig import prescription_settings
from config.reset_config_route import router as reset_config_route


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    await init_db()
    print("\n===============================================================================")
    print(f" 🚀 Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")
    print(f" ✅ Database: {settings.DATABASE_URL.split('://')[0]}")
    print(f" ✅ E-mail backend: {settings.effective_email_backend}")
    print(f" ✅ Media root: {prescription_settings.MEDIA_ROOT}")
    print(f" ✅ OCR language: {prescription_settings.OCR_LANGUAGE} (PDF at {prescription_settings.OCR_PDF_DPI} dpi)")
    print(
        f" ✅ Uploads: {prescription_settings.MAX_PRESCRIPTION_IMAGES} files, "
        f"{prescription_settings.MAX_PRESCRIPTION_IMAGE_BYTES // (1024 * 1024)}MB each"
    )
    print(f" ✅ Order gate requires verified prescriptions: {prescription_settings.ORDER_GATE_REQUIRE_VERIFIED}")
    print("===============================================================================\n")
    yield
    # Shutdown
    print("👋 Shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="Online pharmacy backend: prescription upload, OCR, pharmacist verification and orders",
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# Include routers with prefixes
app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(prescription_router, prefix="/api/prescriptions", tags=["Prescriptions"])
app.include_router(order_router, prefix="/api/orders", tags=["Orders"])
app.include_router(reset_config_route, prefix="/api/system")

prescription_settings.MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
app.mount(prescription_settings.MEDIA_URL, StaticFiles(directory=prescription_settings.MEDIA_ROOT), name="media")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
