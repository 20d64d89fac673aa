"""Subscription details, payment history and plan selection.

Payments are handled by the payment processor behind two Edge Functions:
``create-checkout-session`` (start a Pro subscription) and
``create-portal-session`` (manage an existing one). Both return a URL for
the user to open in a browser.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from mivna.auth import AuthService, NotAuthenticatedError
from mivna.backend import BackendClient, BackendError
from mivna.logging_config import get_logger
from mivna.models import PaymentRecord, PlanTier, Profile, Subscription
from mivna.rate_limit import BETA_LIMIT

logger = get_logger(__name__)

CHECKOUT_FUNCTION = "create-checkout-session"
PORTAL_FUNCTION = "create-portal-session"

BILLING_PROFILE_COLUMNS = (
    "subscription_tier, subscription_status, subscription_current_period_end, "
    "diagrams_generated, readmes_generated, stripe_customer_id"
)
PAYMENT_HISTORY_LIMIT = 10

SALES_EMAIL = "sales@mivna.app"
ENTERPRISE_SUBJECT = "Enterprise Plan Inquiry"

PAID_TIERS = (PlanTier.PRO, PlanTier.ENTERPRISE)


class BillingError(Exception):
    """Raised when a checkout or portal session cannot be created."""

    pass


@dataclass(frozen=True)
class PricingTier:
    name: str
    price: str
    period: str
    description: str
    tier: PlanTier
    cta: str
    features: Tuple[str, ...]
    highlighted: bool = False


PRICING_TIERS: Tuple[PricingTier, ...] = (
    PricingTier(
        name="Free",
        price="$0",
        period="forever",
        description="Perfect for trying out Mivna",
        tier=PlanTier.FREE,
        cta="Get Started",
        features=(
            f"{BETA_LIMIT} diagrams total",
            f"{BETA_LIMIT} READMEs total",
            "1 organization (3 members)",
            "Public repositories only",
            "Community support",
            "Basic diagram types",
        ),
    ),
    PricingTier(
        name="Pro",
        price="$29",
        period="month",
        description="For professional developers and teams",
        tier=PlanTier.PRO,
        cta="Upgrade to Pro",
        highlighted=True,
        features=(
            "Unlimited diagrams",
            "Unlimited READMEs",
            "5 organizations (unlimited members)",
            "Private repositories",
            "All diagram types",
            "Advanced analytics",
            "Priority support (24h)",
            "API access",
        ),
    ),
    PricingTier(
        name="Enterprise",
        price="Custom",
        period="",
        description="For large teams with custom needs",
        tier=PlanTier.ENTERPRISE,
        cta="Contact Sales",
        features=(
            "Everything in Pro",
            "Custom limits",
            "Dedicated support",
            "SLA guarantees",
            "SSO/SAML (coming soon)",
            "On-premise option",
            "White-labeling",
            "Custom integrations",
        ),
    ),
)


@dataclass
class BillingInfo:
    """What the billing page shows."""

    profile: Profile
    subscription: Optional[Subscription]
    payments: List[PaymentRecord]

    @property
    def plan_name(self) -> str:
        return self.subscription.tier.value.capitalize() if self.subscription else "Free"

    @property
    def plan_status(self) -> str:
        if self.subscription and self.subscription.status:
            return self.subscription.status
        return "Active"

    @property
    def diagrams_usage(self) -> str:
        return format_usage(self.profile.diagrams_generated, self.subscription)

    @property
    def readmes_usage(self) -> str:
        return format_usage(self.profile.readmes_generated, self.subscription)


def format_usage(used: Optional[int], subscription: Optional[Subscription]) -> str:
    """``"N (Unlimited)"`` on paid plans, ``"N / BETA_LIMIT"`` otherwise."""
    used = used or 0
    if subscription is not None and subscription.tier in PAID_TIERS:
        return f"{used} (Unlimited)"
    return f"{used} / {BETA_LIMIT}"


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def subscription_from_profile(profile: Profile) -> Optional[Subscription]:
    """Paid subscription described by the profile, or None on the free plan."""
    if profile.subscription_tier == PlanTier.FREE:
        return None
    return Subscription(
        tier=profile.subscription_tier,
        status=profile.subscription_status,
        current_period_end=profile.subscription_current_period_end,
        cancel_at_period_end=False,
    )


def checkout_result_message(params: Mapping[str, str]) -> Optional[str]:
    """Message for the query parameters the checkout redirects back with."""
    if params.get("success") == "true":
        return "Payment successful! Your subscription is now active."
    if params.get("canceled") == "true":
        return "Checkout canceled. No charges were made."
    return None


def enterprise_contact_url() -> str:
    return f"mailto:{SALES_EMAIL}?subject={quote(ENTERPRISE_SUBJECT)}"


def get_pricing_tier(tier: Union[PlanTier, str]) -> PricingTier:
    value = PlanTier(tier)
    for pricing in PRICING_TIERS:
        if pricing.tier == value:
            return pricing
    raise ValueError(f"Unknown plan: {tier}")


class BillingService:
    """Billing data and payment redirects for the signed-in user."""

    def __init__(self, backend: BackendClient, auth: AuthService, app_url: str = "https://mivna.app"):
        self.backend = backend
        self.auth = auth
        self.app_url = app_url.rstrip("/")

    async def fetch_billing(self, user_id: str) -> BillingInfo:
        """Load subscription details and the most recent payments.

        Raises:
            BackendError: If either query fails
        """
        row = await (
            self.backend.table("profiles")
            .select(BILLING_PROFILE_COLUMNS)
            .eq("id", user_id)
            .single()
            .execute()
        )
        profile = Profile.model_validate({"id": user_id, **row})

        payments = await (
            self.backend.table("payment_history")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", ascending=False)
            .limit(PAYMENT_HISTORY_LIMIT)
            .execute()
        )

        return BillingInfo(
            profile=profile,
            subscription=subscription_from_profile(profile),
            payments=[PaymentRecord.model_validate(p) for p in payments or []],
        )

    async def _redirect_url(self, function_name: str, body: Optional[dict], failure: str) -> str:
        session = self.auth.require_auth()
        try:
            data = await self.backend.invoke(
                function_name,
                body,
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
        except BackendError as e:
            logger.error(f"{failure}: {e}")
            raise BillingError(failure) from e

        if not isinstance(data, dict) or not data.get("url"):
            raise BillingError(failure)
        return data["url"]

    async def create_checkout_session(self, tier: Union[PlanTier, str] = PlanTier.PRO) -> str:
        """Start a checkout and return the payment page URL."""
        return await self._redirect_url(
            CHECKOUT_FUNCTION, {"tier": PlanTier(tier).value}, "Failed to create checkout session"
        )

    async def create_portal_session(self) -> str:
        """Return the URL of the subscription management portal."""
        return await self._redirect_url(PORTAL_FUNCTION, None, "Failed to create portal session")

    async def select_plan(self, tier: Union[PlanTier, str]) -> str:
        """Where choosing a plan takes the user.

        Free goes to sign-up, Enterprise to a sales email, and Pro to a
        checkout session (which needs a signed-in user).

        Raises:
            NotAuthenticatedError: Choosing Pro without a session
            BillingError: If checkout cannot be started
        """
        tier = PlanTier(tier)
        if tier == PlanTier.FREE:
            return f"{self.app_url}/signup"
        if tier == PlanTier.ENTERPRISE:
            return enterprise_contact_url()

        if self.auth.session is None:
            raise NotAuthenticatedError("Log in to upgrade. Run 'mivna auth login' first.")
        return await self.create_checkout_session(tier)
