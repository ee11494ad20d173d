from dataclasses import dataclass, field
from typing import Optional


@dataclass
class TenantPaymentConfig:
    organization_id: str
    enabled: bool
    secret_key: Optional[str] = field(default=None, repr=False)
    webhook_secret: Optional[str] = field(default=None, repr=False)
    publishable_key: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.secret_key)


class PaymentConfigRepository:
    def get(self, organization_id: str) -> Optional[TenantPaymentConfig]:
        ...

    def set_webhook_secret(self, organization_id: str, secret: Optional[str]) -> None:
        ...
