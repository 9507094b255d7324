import hmac

from fastapi import APIRouter, Request, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.config import logger, INTERNAL_API_KEY
from core.database import get_db
from core.errors import TransientStoreError, ValidationError
from models.sales import Sale
from models.user import User
from utils.accounts import create_account, referral_link

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


def get_internal_api_key() -> str:
    return INTERNAL_API_KEY


def _authorized(request: Request, expected: str) -> bool:
    provided = request.headers.get("X-Internal-Key") or ""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


@router.post("/register")
async def register_account(
    request: Request,
    uid: str = Body(..., embed=True),
    email: str = Body(..., embed=True),
    displayName: str = Body("", embed=True),
    db: Session = Depends(get_db),
    api_key: str = Depends(get_internal_api_key),
):
    """Create the account record after signup and claim any pending product access."""
    if not _authorized(request, api_key):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    try:
        user, created, promoted = create_account(db, uid, email, displayName)
    except ValidationError as ex:
        logger.warning(f"[accounts.register] rejected uid={uid}: {ex}")
        return JSONResponse({"error": str(ex)}, status_code=400)
    except TransientStoreError as ex:
        logger.error(f"[accounts.register] failed uid={uid}: {ex}")
        return JSONResponse({"error": "Failed to create account"}, status_code=500)

    out = user.to_dict()
    out["referralLink"] = referral_link(user.referral_code)
    return {"ok": True, "created": created, "promotedProducts": promoted, "account": out}


@router.get("/{uid}")
async def get_account(uid: str, request: Request, db: Session = Depends(get_db), api_key: str = Depends(get_internal_api_key)):
    if not _authorized(request, api_key):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    user = db.query(User).filter(User.uid == uid).first()
    if not user:
        return JSONResponse({"error": "Account not found"}, status_code=404)
    out = user.to_dict()
    out["referralLink"] = referral_link(user.referral_code)
    return out


@router.get("/{uid}/sales")
async def list_sales(uid: str, request: Request, limit: int = 50, db: Session = Depends(get_db), api_key: str = Depends(get_internal_api_key)):
    """Referral sales credited to the account, newest first."""
    if not _authorized(request, api_key):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    limit = max(1, min(int(limit or 50), 200))
    rows = (
        db.query(Sale)
        .filter(Sale.account_uid == uid)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
    return {"sales": [r.to_dict() for r in rows]}
