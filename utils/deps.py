from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.orchestrator import WorkflowOrchestrator
from utils.payments import PaymentProcessor, get_payment_processor


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(db, processor)
