"""Liveness and readiness probes."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.config import settings
from freightguard.core.logging import db_logger
from freightguard.db.database import get_db

router = APIRouter()


@router.get('/healthz')
def healthz():
    return {"status": "ok", "service": settings.APP_NAME}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db)):
    """Ready once the record store answers a trivial query."""
    try:
        await db.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        db_logger.error('readiness_check_failed', error=e)
        raise HTTPException(status_code=503, detail='Not ready')
    return {"status": "ready", "database": "ok"}
