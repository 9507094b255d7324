from decimal import Decimal
from typing import Mapping

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import logger, WEBHOOK_SECRET
from core.database import get_db
from core.errors import AuthenticationError, NotFoundError, TransientStoreError, ValidationError
from models.webhook_events import WebhookEvent
from utils.commissions import credit_referral, get_commission_policy
from utils.entitlements import grant_access
from utils.events import (
    CheckoutCompleted,
    CheckoutSessionObject,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    parse_event,
    verify_signature,
)
from utils.purchases import record_purchase
from utils.subscriptions import apply_subscription_change, cancel_subscription

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_webhook_secret() -> str:
    """FastAPI dependency returning the shared webhook secret."""
    return WEBHOOK_SECRET


def _log_event(db: Session, payload: dict) -> None:
    try:
        db.add(WebhookEvent(
            event_id=str(payload.get("id") or "") or None,
            event_type=str(payload.get("type") or "")[:100],
            payload=payload,
        ))
        db.commit()
    except SQLAlchemyError as ex:
        db.rollback()
        logger.warning(f"[webhook] audit log write failed: {ex}")


def _run_step(db: Session, name: str, fn, errors: list[str]) -> dict:
    """Run one checkout sub-step; failures are logged and collected, never raised."""
    try:
        return fn()
    except NotFoundError as ex:
        logger.info(f"[webhook] {name}: {ex}")
        return {"skipped": True, "reason": "not_found"}
    except TransientStoreError as ex:
        logger.warning(f"[webhook] {name} failed: {ex}")
        errors.append(name)
        return {"failed": True}
    except Exception as ex:
        logger.exception(f"[webhook] {name} crashed: {ex}")
        db.rollback()
        errors.append(name)
        return {"failed": True}


def process_checkout(db: Session, session: CheckoutSessionObject, policy: Mapping[str, Decimal]) -> dict:
    """Referral credit, access grant and purchase record for a paid checkout.

    The three steps are isolated from each other; names of failed steps are
    returned under "errors" so the caller can ask the provider to retry.
    """
    if not session.is_paid:
        logger.info(f"[webhook] checkout session={session.id} payment_status={session.payment_status!r}; nothing to do")
        return {"skipped": True, "reason": "payment_not_paid"}

    errors: list[str] = []
    steps: dict = {}

    code = session.referral_code()
    if code:
        steps["referral"] = _run_step(db, "referral", lambda: credit_referral(db, session, policy), errors)
    else:
        steps["referral"] = {"skipped": True, "reason": "no_referral_code"}

    product_ids = session.product_ids()
    email = session.email()
    if product_ids and email:
        steps["access"] = _run_step(db, "access", lambda: grant_access(db, product_ids, email, session.id), errors)
    else:
        steps["access"] = {"skipped": True, "reason": "no_products_or_email"}

    steps["purchase"] = _run_step(
        db,
        "purchase",
        lambda: record_purchase(
            db,
            session_id=session.id,
            customer_email=email or None,
            referral_code=code or None,
            product_ids=product_ids,
            product_names=session.product_names(),
            amount=session.amount(),
            currency=session.currency_code(),
            payment_id=session.payment_intent,
        ),
        errors,
    )
    return {"session_id": session.id, "steps": steps, "errors": errors}


def dispatch_event(db: Session, event, policy: Mapping[str, Decimal]) -> dict:
    if isinstance(event, (SubscriptionCreated, SubscriptionUpdated)):
        sub = event.data.object
        try:
            return apply_subscription_change(db, sub)
        except NotFoundError as ex:
            logger.warning(f"[webhook] {event.type} dropped: {ex}")
            return {"skipped": True, "reason": "account_not_found"}
    if isinstance(event, SubscriptionDeleted):
        sub = event.data.object
        try:
            return cancel_subscription(db, sub)
        except NotFoundError as ex:
            logger.warning(f"[webhook] {event.type} dropped: {ex}")
            return {"skipped": True, "reason": "account_not_found"}
    if isinstance(event, CheckoutCompleted):
        return process_checkout(db, event.data.object, policy)
    raise ValidationError(f"unhandled event {type(event).__name__}")


@router.post("/payments")
@router.post("/stripe")
async def payments_webhook(
    request: Request,
    db: Session = Depends(get_db),
    secret: str = Depends(get_webhook_secret),
    policy: Mapping[str, Decimal] = Depends(get_commission_policy),
):
    """
    Payment-provider webhook.
    Verifies the raw body against the shared secret, then applies subscription
    lifecycle and checkout events to accounts and ledgers.
    """
    raw_body = await request.body()

    # --- Step 1: Verify and decode ---
    try:
        payload = verify_signature(raw_body, dict(request.headers), secret)
    except AuthenticationError as ex:
        logger.warning(f"[webhook] signature verification failed: {ex}")
        return JSONResponse({"error": "invalid signature"}, status_code=400)
    except ValidationError as ex:
        logger.warning(f"[webhook] invalid payload: {ex}")
        return JSONResponse({"error": "invalid payload"}, status_code=400)

    try:
        event = parse_event(payload)
    except ValidationError as ex:
        logger.warning(f"[webhook] invalid event: {ex}")
        return JSONResponse({"error": "invalid payload", "detail": str(ex)}, status_code=400)

    evt_type = str(payload.get("type") or "")
    logger.info(f"[webhook] received type={evt_type} id={payload.get('id')}")
    _log_event(db, payload)

    if event is None:
        return {"received": True, "ignored": True, "type": evt_type}

    # --- Step 2: Dispatch ---
    try:
        result = dispatch_event(db, event, policy)
    except TransientStoreError as ex:
        logger.warning(f"[webhook] {evt_type} store failure: {ex}")
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)
    except Exception as ex:
        logger.exception(f"[webhook] {evt_type} processing error: {ex}")
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    if result.get("errors"):
        logger.warning(f"[webhook] {evt_type} completed with failed steps={result['errors']}; asking provider to retry")
        return JSONResponse({"error": "Webhook processing failed", "failed_steps": result["errors"]}, status_code=500)

    return {"received": True, "type": evt_type, "result": result}
