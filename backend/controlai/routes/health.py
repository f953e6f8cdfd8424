from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from controlai.core.config import settings
from controlai.core.database import get_db
from controlai.core.deps import get_email_service


router = APIRouter()


@router.get("/health")
def health(db: Session = Depends(get_db), email=Depends(get_email_service)):
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "env": settings.env,
        "database": database,
        "smtp": email.describe() if email is not None else None,
        "signing": settings.signing_enabled,
    }
