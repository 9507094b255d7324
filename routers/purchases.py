from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.config import logger
from core.database import get_db
from utils.purchases import get_purchase

router = APIRouter(prefix="/api/purchase", tags=["purchases"])


@router.get("/{session_id}")
async def purchase_by_session(session_id: str, db: Session = Depends(get_db)):
    """Purchase summary for the checkout success page."""
    session_id = (session_id or "").strip()
    if not session_id:
        return JSONResponse({"error": "Session ID is required"}, status_code=400)

    purchase = get_purchase(db, session_id)
    if not purchase:
        logger.info(f"[purchases] lookup miss session={session_id}")
        return JSONResponse({"error": "Purchase not found"}, status_code=404)
    return purchase.to_dict()
