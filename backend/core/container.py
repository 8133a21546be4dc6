"""
Application dependency registry.

Built once in the FastAPI lifespan and stored on ``app.state.container``;
tests construct their own with in-memory SQLite and fake adapters.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from adapters.analysis.scoring_client import AnalysisWebhookClient, create_analysis_client
from adapters.payments.paypal_adapter import PayPalAdapter, create_paypal_adapter
from core.interfaces.repositories import EntitlementStore
from core.plans import PlanCatalog, build_plan_catalog
from core.security.tokens import TokenService
from infrastructure.config.settings import Settings
from infrastructure.database.connection import create_engine_from_settings, create_session_maker
from infrastructure.repositories.entitlement_store import SQLAlchemyEntitlementStore
from services.allowance import AllowanceEvaluator
from services.degraded_mode import DegradedModePolicy
from services.metered_actions import MeteredActionService
from services.webhook_ingestion import SubscriptionIngestionService


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    catalog: PlanCatalog
    store: EntitlementStore
    token_service: TokenService
    paypal: PayPalAdapter
    scoring: AnalysisWebhookClient
    degraded_policy: DegradedModePolicy
    evaluator: AllowanceEvaluator
    ingestion: SubscriptionIngestionService
    actions: MeteredActionService
    engine: Optional[AsyncEngine] = None
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def build_container(
    settings: Settings,
    *,
    engine: Optional[AsyncEngine] = None,
    store: Optional[EntitlementStore] = None,
    paypal: Optional[PayPalAdapter] = None,
    scoring: Optional[AnalysisWebhookClient] = None,
    token_service: Optional[TokenService] = None,
) -> ApplicationContainer:
    """
    Wire every service from ``settings``.

    Keyword arguments replace individual collaborators (tests pass an
    SQLite engine, a mocked PayPal adapter, a fixed token secret).
    """
    session_maker = None
    if store is None:
        engine = engine or create_engine_from_settings(settings)
        session_maker = create_session_maker(engine)
        store = SQLAlchemyEntitlementStore(session_maker, timeout=settings.entitlement_store_timeout)

    catalog = build_plan_catalog(settings)
    paypal = paypal or create_paypal_adapter(settings)
    scoring = scoring or create_analysis_client(settings)
    token_service = token_service or TokenService(
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        audience=settings.jwt_audience,
    )

    degraded_policy = DegradedModePolicy(fallback_limit=settings.degraded_fallback_limit)
    evaluator = AllowanceEvaluator(
        store,
        catalog,
        degraded_policy=degraded_policy,
        guest_cap=settings.guest_monthly_cap,
        unlimited_user_ids=settings.owner_user_ids_set,
    )

    return ApplicationContainer(
        settings=settings,
        catalog=catalog,
        store=store,
        token_service=token_service,
        paypal=paypal,
        scoring=scoring,
        degraded_policy=degraded_policy,
        evaluator=evaluator,
        ingestion=SubscriptionIngestionService(store, catalog, paypal),
        actions=MeteredActionService(evaluator, store, scoring),
        engine=engine,
        session_maker=session_maker,
    )
