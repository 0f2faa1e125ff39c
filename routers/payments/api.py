from fastapi import APIRouter

from . import checkout, connect, process_payouts, process_refund, stripe_webhook

router = APIRouter()
router.include_router(process_refund.router)
router.include_router(process_payouts.router)
router.include_router(checkout.router)
router.include_router(connect.router)
router.include_router(stripe_webhook.router)
