from datetime import datetime
from typing import Optional
from sqlmodel import Session, select

from .....db.models import Organization
from .....application.ports.payment_config_repo import PaymentConfigRepository, TenantPaymentConfig


class SqlPaymentConfigRepository(PaymentConfigRepository):
    def __init__(self, session: Session):
        self.session = session

    def _get_org(self, organization_id: str) -> Optional[Organization]:
        return self.session.exec(select(Organization).where(Organization.id == organization_id)).first()

    def get(self, organization_id: str) -> Optional[TenantPaymentConfig]:
        org = self._get_org(organization_id)
        if not org:
            return None
        return TenantPaymentConfig(
            organization_id=org.id,
            enabled=bool(org.stripe_enabled),
            secret_key=org.stripe_secret_key,
            webhook_secret=org.stripe_webhook_secret,
            publishable_key=org.stripe_publishable_key,
            name=org.name,
        )

    def set_webhook_secret(self, organization_id: str, secret: Optional[str]) -> None:
        org = self._get_org(organization_id)
        if not org:
            return
        org.stripe_webhook_secret = secret
        org.updated_at = datetime.utcnow()
        self.session.add(org)
        self.session.commit()
