"""Dependency graph of the HTTP application.

Every service is built once per process from Settings and injected into
routes through FastAPI dependencies; tests replace them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fiscalia.domain.ports import (
    CompanyStore,
    ConversationStore,
    FiscalGateway,
    InvoiceStore,
    NotificationService,
)
from fiscalia.fiscal.nuvem_fiscal import NuvemFiscalGateway
from fiscalia.infra.repositories.accounts_repository import PgAccountStore
from fiscalia.infra.repositories.clients_repository import PgClientDirectory
from fiscalia.infra.repositories.companies_repository import PgCompanyStore
from fiscalia.infra.repositories.conversations_repository import PgConversationStore
from fiscalia.infra.repositories.invoices_repository import PgInvoiceStore
from fiscalia.infra.repositories.notifications_repository import PgNotificationService
from fiscalia.infra.settings import Settings
from fiscalia.infra.time import Clock, SystemClock
from fiscalia.llm.client import ChatCompletionsClient
from fiscalia.payments.stripe_client import StripePaymentProcessor
from fiscalia.services.action_executor import ActionExecutor
from fiscalia.services.cancellation_service import CancellationService
from fiscalia.services.dispatch import MessageDispatcher
from fiscalia.services.issuance import IssuanceOrchestrator
from fiscalia.services.plan_limits import StorePlanLimitService
from fiscalia.services.queries import QueryService
from fiscalia.services.status_polling import InvoiceStatusPoller


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_clock() -> Clock:
    return SystemClock()


@lru_cache(maxsize=1)
def get_fiscal_gateway() -> FiscalGateway | None:
    settings = get_settings()
    if settings.fiscal is None:
        return None
    return NuvemFiscalGateway(settings.fiscal, clock=get_clock())


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    return PgConversationStore()


@lru_cache(maxsize=1)
def get_invoice_store() -> InvoiceStore:
    return PgInvoiceStore()


@lru_cache(maxsize=1)
def get_company_store() -> CompanyStore:
    return PgCompanyStore()


@lru_cache(maxsize=1)
def get_notification_service() -> NotificationService:
    return PgNotificationService()


@lru_cache(maxsize=1)
def get_dispatcher() -> MessageDispatcher:
    settings = get_settings()
    clients = PgClientDirectory()
    language_model = ChatCompletionsClient(settings.llm) if settings.llm else None
    return MessageDispatcher(
        clients=clients,
        conversations=get_conversation_store(),
        queries=QueryService(
            invoices=get_invoice_store(),
            clients=clients,
            companies=get_company_store(),
            clock=get_clock(),
        ),
        companies=get_company_store(),
        language_model=language_model,
        confidence_threshold=settings.confidence_threshold,
        history_limit=settings.history_limit,
        clock=get_clock(),
    )


@lru_cache(maxsize=1)
def get_action_executor() -> ActionExecutor:
    settings = get_settings()
    clients = PgClientDirectory()
    fiscal = get_fiscal_gateway()
    payments = StripePaymentProcessor(settings.stripe_secret_key) if settings.stripe_secret_key else None
    issuance = IssuanceOrchestrator(
        companies=get_company_store(),
        clients=clients,
        invoices=get_invoice_store(),
        plan_limits=StorePlanLimitService(
            accounts=PgAccountStore(),
            companies=get_company_store(),
            invoices=get_invoice_store(),
            clock=get_clock(),
        ),
        notifications=get_notification_service(),
        fiscal=fiscal,
        payments=payments,
        clock=get_clock(),
        pay_per_use_price_cents=settings.pay_per_use_price_cents,
    )
    cancellation = CancellationService(
        companies=get_company_store(),
        invoices=get_invoice_store(),
        notifications=get_notification_service(),
        fiscal=fiscal,
        clock=get_clock(),
    )
    return ActionExecutor(
        issuance=issuance,
        cancellation=cancellation,
        clients=clients,
        invoices=get_invoice_store(),
        companies=get_company_store(),
        fiscal=fiscal,
    )


def get_status_poller() -> InvoiceStatusPoller | None:
    fiscal = get_fiscal_gateway()
    if fiscal is None:
        return None
    return InvoiceStatusPoller(
        invoices=get_invoice_store(),
        fiscal=fiscal,
        notifications=get_notification_service(),
        companies=get_company_store(),
        clock=get_clock(),
    )
