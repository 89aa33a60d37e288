from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.db.session import SessionLocal
from agenda.logging_utils import configure_logging, set_tenant_context
from agenda.models import Client, Provider, Service
from agenda.services.provider_config import ProviderSnapshot
from agenda.services.slot_generator import GenerationReport, generate_for_provider

logger = logging.getLogger(__name__)

DEMO_TENANT_ID = uuid.uuid5(uuid.NAMESPACE_DNS, "demo.agenda.local")

# Monday (1) to Friday (5).
BUSINESS_WEEK: list[dict[str, Any]] = [
    {"weekday": weekday, "open": "09:00", "close": "17:00"} for weekday in range(1, 6)
]

SERVICE_CATALOG: list[tuple[str, int, int]] = [
    ("Corte de Cabelo", 30, 5000),
    ("Coloração", 60, 15000),
    ("Manicure", 45, 4000),
]

PROVIDERS: list[str] = ["Ana Costa", "Bruno Lima"]

CLIENTS: list[tuple[str, str, str]] = [
    ("Maria Silva", "maria.silva@example.com", "+5585987654321"),
    ("João Pereira", "joao.pereira@example.com", "+558593334455"),
]


def ensure_providers(session: Session) -> list[Provider]:
    created = 0
    providers: list[Provider] = []
    for name in PROVIDERS:
        provider = session.execute(
            select(Provider).where(
                Provider.tenant_id == DEMO_TENANT_ID,
                Provider.full_name == name,
            )
        ).scalar_one_or_none()
        if not provider:
            provider = Provider(
                tenant_id=DEMO_TENANT_ID,
                full_name=name,
                timezone=settings.timezone,
                weekly_availability=BUSINESS_WEEK,
                slot_interval_minutes=30,
                max_advance_days=settings.default_max_advance_days,
            )
            session.add(provider)
            session.flush()
            created += 1
        providers.append(provider)

    logger.info("ensured providers", extra={"created_count": created, "total": len(providers)})
    return providers


def ensure_services(session: Session, provider: Provider) -> list[Service]:
    created = 0
    services: list[Service] = []
    for name, duration, price in SERVICE_CATALOG:
        service = session.execute(
            select(Service).where(
                Service.provider_id == provider.id,
                Service.name == name,
            )
        ).scalar_one_or_none()
        if not service:
            service = Service(
                tenant_id=provider.tenant_id,
                provider_id=provider.id,
                name=name,
                duration_minutes=duration,
                price_cents=price,
            )
            session.add(service)
            session.flush()
            created += 1
        services.append(service)

    logger.info(
        "ensured services",
        extra={"provider": provider.full_name, "created_count": created, "total": len(services)},
    )
    return services


def ensure_clients(session: Session) -> list[Client]:
    created = 0
    clients: list[Client] = []
    for name, email, phone in CLIENTS:
        client = session.execute(
            select(Client).where(
                Client.tenant_id == DEMO_TENANT_ID,
                Client.full_name == name,
            )
        ).scalar_one_or_none()
        if not client:
            client = Client(
                tenant_id=DEMO_TENANT_ID,
                full_name=name,
                email=email,
                phone_number=phone,
            )
            session.add(client)
            session.flush()
            created += 1
        clients.append(client)

    logger.info("ensured clients", extra={"created_count": created, "total": len(clients)})
    return clients


def seed_demo(session: Session, *, now: datetime | None = None) -> dict[str, Any]:
    """Create the demo catalog and fill each provider's slot horizon."""

    set_tenant_context(DEMO_TENANT_ID)
    providers = ensure_providers(session)
    services = {provider.id: ensure_services(session, provider) for provider in providers}
    clients = ensure_clients(session)

    reports: list[GenerationReport] = []
    for provider in providers:
        snapshot = ProviderSnapshot.from_model(provider)
        reports.append(
            generate_for_provider(session, snapshot, snapshot.max_advance_days, now=now)
        )

    return {
        "providers": providers,
        "services": services,
        "clients": clients,
        "reports": reports,
    }


def seed() -> None:
    configure_logging()
    logger.info("starting seed process")

    session = SessionLocal()
    try:
        result = seed_demo(session)
        session.commit()
        logger.info(
            "seed complete",
            extra={"slots_generated": sum(report.generated for report in result["reports"])},
        )
    except Exception:
        session.rollback()
        logger.exception("seed failed")
        raise
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    seed()
