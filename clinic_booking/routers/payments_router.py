from fastapi import APIRouter, Depends

from ..auth import Principal, get_current_principal
from ..exceptions import raise_for_error
from ..application.errors import ConfigurationError, GatewayError
from ..infrastructure.payments.stripe_gateway import StripeCheckoutGateway
from ..infrastructure.persistence.sqlalchemy.repositories.payment_config_repository_sql import SqlPaymentConfigRepository
from ..schemas.common.common import ErrorResponse
from ..schemas.payments.payment import (
    PaymentConfigurationResponse,
    WebhookEndpointResponse,
    WebhookRemovedResponse,
)
from .dependencies import get_checkout_gateway, get_payment_config_repository

router = APIRouter(prefix="/payments", tags=["Payments"], responses={422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}})


@router.get("/configuration", response_model=PaymentConfigurationResponse)
def check_configuration(
    principal: Principal = Depends(get_current_principal),
    config_repo: SqlPaymentConfigRepository = Depends(get_payment_config_repository),
):
    # Booleans only, credentials never leave the server
    config = config_repo.get(principal.organization_id)
    return PaymentConfigurationResponse(
        is_configured=bool(config and config.is_configured and config.publishable_key),
        has_publishable_key=bool(config and config.publishable_key),
        has_secret_key=bool(config and config.secret_key),
        is_enabled=bool(config and config.enabled),
        has_webhook_secret=bool(config and config.webhook_secret),
    )


@router.post("/webhook", response_model=WebhookEndpointResponse)
def setup_webhook(
    principal: Principal = Depends(get_current_principal),
    gateway: StripeCheckoutGateway = Depends(get_checkout_gateway),
):
    try:
        endpoint = gateway.register_webhook_endpoint(principal.organization_id)
    except (ConfigurationError, GatewayError) as e:
        raise_for_error(e)
    return WebhookEndpointResponse(webhook_id=endpoint.id, webhook_url=endpoint.url, is_new_webhook=endpoint.created)


@router.delete("/webhook", response_model=WebhookRemovedResponse)
def remove_webhook(
    principal: Principal = Depends(get_current_principal),
    gateway: StripeCheckoutGateway = Depends(get_checkout_gateway),
):
    try:
        removed = gateway.remove_webhook_endpoint(principal.organization_id)
    except (ConfigurationError, GatewayError) as e:
        raise_for_error(e)
    return WebhookRemovedResponse(success=True, removed=removed)
