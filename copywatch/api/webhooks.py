"""
Webhook API Endpoints

Receive wallet-activity webhooks from the signing provider and feed ERC-20
transfers into watched wallets through the mirror engine.
"""

from fastapi import APIRouter, BackgroundTasks, Header, Request
from pydantic import BaseModel, ValidationError
from typing import Any, Dict, List, Optional
import logging

from ..core.copy_trading.models import PushNotification

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks")


class WebhookResponse(BaseModel):
    """Response after accepting a webhook."""

    success: bool
    events_accepted: int = 0
    message: Optional[str] = None


def _parse_events(body: Any) -> List[PushNotification]:
    items = body if isinstance(body, list) else [body]
    events: List[PushNotification] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            events.append(PushNotification.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed webhook event: {e.errors()[:1]}")
    return events


async def _dispatch(engine, events: List[PushNotification]) -> None:
    for event in events:
        try:
            await engine.handle_push_notification(event)
        except Exception as e:
            logger.error(f"Webhook event {event.transaction_hash} failed: {e}", exc_info=True)


@router.post("/cdp", response_model=WebhookResponse)
async def cdp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_coinbase_signature: Optional[str] = Header(None, alias="X-Coinbase-Signature"),
):
    """
    Receive wallet activity webhooks.

    Always answers 200 so the provider does not retry; duplicates are
    absorbed by the engine's idempotency check anyway.
    """
    try:
        body: Any = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON, ignoring")
        return WebhookResponse(success=False, message="invalid JSON")

    events = _parse_events(body)
    for event in events:
        fields: Dict[str, Any] = {
            "event_type": event.event_type,
            "network": event.network,
            "token": event.contract_address,
            "from": event.from_address,
            "to": event.to,
            "tx": event.transaction_hash,
            "signed": bool(x_coinbase_signature),
        }
        logger.info(f"Webhook activity received: {fields}")

    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return WebhookResponse(success=False, message="mirror engine not running")

    transfers = [e for e in events if e.is_erc20_transfer]
    if transfers:
        background_tasks.add_task(_dispatch, engine, transfers)

    return WebhookResponse(success=True, events_accepted=len(transfers))
