"""Acumatica push-notification endpoints.

Each notification names one document; it is re-fetched from Acumatica and
upserted, so the payload itself only has to carry the key.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from api.services.runtime import get_runtime, get_tenant_id
from core.models.mirror import SyncMode
from core.observability.logging import get_logger, with_correlation
from sync.engine import entity_spec, webhook_key
from sync.runtime import SyncRuntime


router = APIRouter()
logger = get_logger(__name__)


@router.post("/{entity}")
async def receive_notification(
    entity: str,
    payload: Dict[str, Any] = Body(...),
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Resync the customer, invoice or payment named in the notification."""
    spec = entity_spec(entity)
    key = webhook_key(spec.entity_type, payload)
    with with_correlation(tenant_id=runtime.tenant(tenant_id), entity_type=spec.entity_type.value):
        logger.info(f"Webhook received for {spec.entity_type.value} {':'.join(key)}")
        engine = runtime.engine(spec.entity_type, tenant_id)
        result = await engine.sync_document(*key, source=SyncMode.WEBHOOK)
    return result.to_response(runtime.settings.max_response_errors)
