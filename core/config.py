import os
import json
import logging
from decimal import Decimal, InvalidOperation
from dotenv import load_dotenv

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("storefront")

APP_NAME = os.getenv("APP_NAME", "Storefront")

# Database
DATABASE_URL = (os.getenv("DATABASE_URL", "") or "").strip() or "sqlite:///./storefront.db"

# Payments webhook. Secrets prefixed with whsec_ use Standard Webhooks signatures,
# anything else is a shared secret sent in X-Webhook-Secret.
WEBHOOK_SECRET = (
    os.getenv("WEBHOOK_SECRET")
    or os.getenv("STRIPE_WEBHOOK_SECRET")
    or os.getenv("PAYMENTS_WEBHOOK_SECRET")
    or ""
).strip()

# Commission policy: rate applied to the gross amount, keyed by sale type
DEFAULT_COMMISSION_RATES = {
    "store": Decimal("1.0"),
    "subscription": Decimal("0.10"),
}


def _rate(raw: str | None, default: Decimal) -> Decimal:
    try:
        val = Decimal(str(raw).strip()) if raw not in (None, "") else default
    except (InvalidOperation, ValueError):
        logger.warning(f"[config] invalid commission rate {raw!r}; using {default}")
        return default
    if val < 0:
        logger.warning(f"[config] negative commission rate {raw!r}; using {default}")
        return default
    return val


def load_commission_rates() -> dict[str, Decimal]:
    """Build the commission policy table from env.

    COMMISSION_RATE_STORE / COMMISSION_RATE_SUBSCRIPTION set single entries;
    COMMISSION_RATES (JSON object) overrides both.
    """
    rates = {
        "store": _rate(os.getenv("COMMISSION_RATE_STORE"), DEFAULT_COMMISSION_RATES["store"]),
        "subscription": _rate(os.getenv("COMMISSION_RATE_SUBSCRIPTION"), DEFAULT_COMMISSION_RATES["subscription"]),
    }
    raw = (os.getenv("COMMISSION_RATES") or "").strip()
    if raw:
        try:
            parsed = json.loads(raw)
        except Exception as ex:
            logger.warning(f"[config] COMMISSION_RATES is not valid JSON: {ex}")
            parsed = {}
        if isinstance(parsed, dict):
            for k, v in parsed.items():
                key = str(k or "").strip().lower()
                if key:
                    rates[key] = _rate(v, rates.get(key, Decimal("0")))
    return rates


COMMISSION_RATES = load_commission_rates()

# Referral codes
REFERRAL_CODE_LENGTH = int(os.getenv("REFERRAL_CODE_LENGTH", "8"))

FRONTEND_ORIGIN = (os.getenv("FRONTEND_ORIGIN", "").split(",")[0].strip() or "http://localhost:3000").rstrip("/")

# Shared key for server-to-server calls (signup hook, dashboard reads)
INTERNAL_API_KEY = (os.getenv("INTERNAL_API_KEY", "") or "").strip()
