# scripts/expire_prescriptions.py
#  to run the script (e.g. from a daily cron job), run the following command:
#  python scripts/expire_prescriptions.py

"""
Prescription Expiry Sweep
Moves every live prescription past its expiry date to 'expired'.
"""
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.database.connection import AsyncSessionLocal, init_db
from app.system_services.prescription_services import expire_due_prescriptions

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_sweep() -> list:
    await init_db()
    async with AsyncSessionLocal() as db:
        return await expire_due_prescriptions(db)


if __name__ == "__main__":
    expired = asyncio.run(run_sweep())
    for number in expired:
        logger.info(f"⌛ {number}")
    logger.info(f"✓ {len(expired)} prescription(s) expired")
