from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from app.db.dependencies import get_db
from app.models import Base

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    database: str
    ledger: str


def _missing_tables(db: Session) -> list[str]:
    existing = set(inspect(db.connection()).get_table_names())
    return sorted(name for name in Base.metadata.tables if name not in existing)


@router.get("", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Check the database and that every ledger table is present."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    if db_status != "healthy":
        ledger_status = "unknown"
    else:
        missing = _missing_tables(db)
        ledger_status = f"missing tables: {', '.join(missing)}" if missing else "healthy"

    return HealthResponse(
        status="healthy" if db_status == ledger_status == "healthy" else "degraded",
        database=db_status,
        ledger=ledger_status,
    )


@router.get("/ready", response_model=dict)
def readiness_check(db: Session = Depends(get_db)):
    """Kubernetes readiness check: ready once migrations have created the ledger tables."""
    try:
        return {"status": "not_ready" if _missing_tables(db) else "ready"}
    except Exception:
        return {"status": "not_ready"}


@router.get("/live", response_model=dict)
def liveness_check():
    """Kubernetes liveness check."""
    return {"status": "alive"}
