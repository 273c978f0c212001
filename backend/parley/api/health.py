from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from parley.database import get_db
from parley.redis.client import relay_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db)) -> dict:
    """Database must answer; the Redis relay is optional and only reported."""
    relay = relay_status()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        return {"status": "unhealthy", "database": "disconnected", "relay": relay, "error": str(exc)}
    return {"status": "healthy", "database": "connected", "relay": relay}
