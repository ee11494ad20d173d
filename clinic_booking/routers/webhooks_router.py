import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from ..exceptions import status_for_error
from ..application.services.webhook_reconciler import WebhookReconciler, WebhookStatus
from ..schemas.payments.payment import WebhookAckResponse
from .dependencies import get_webhook_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhooks"])


@router.post("/{organization_id}", response_model=WebhookAckResponse)
async def receive_webhook(
    organization_id: str,
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    outcome = await run_in_threadpool(reconciler.handle, organization_id, payload, signature)

    if outcome.status == WebhookStatus.REJECTED:
        raise HTTPException(status_code=status_for_error(outcome.error), detail=outcome.error.message)
    if outcome.status == WebhookStatus.RETRY:
        # Non-2xx makes Stripe redeliver later
        raise HTTPException(status_code=503, detail="Appointment not available yet, retry later")
    return WebhookAckResponse(received=True, status=outcome.status)


@router.get("/{organization_id}")
def webhook_endpoint_status(organization_id: str):
    return {
        "message": "Stripe webhook endpoint is active",
        "organization_id": organization_id,
        "timestamp": datetime.utcnow().isoformat(),
    }
