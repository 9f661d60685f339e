import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from premium_gateway.deps import get_reconciler
from premium_gateway.errors import ServiceError
from premium_gateway.reconciler import Reconciler

router = APIRouter(tags=["webhook"])
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def paypal_webhook(request: Request, reconciler: Reconciler = Depends(get_reconciler)):
    body = await request.body()
    try:
        outcome = await run_in_threadpool(reconciler.handle_webhook, dict(request.headers), body)
    except ServiceError:
        raise
    except Exception:
        logger.exception("Webhook processing failed")
        return JSONResponse(status_code=500, content={"success": False, "error": "Webhook processing failed."})

    # Recognized or not, a verified delivery is acknowledged so PayPal stops retrying.
    logger.info(
        "Webhook %s handled (user=%s, change=%s, reason=%s)",
        outcome.event_type or "<none>",
        outcome.user_id,
        outcome.change.value if outcome.change else None,
        outcome.reason,
    )
    return {"status": "OK"}
