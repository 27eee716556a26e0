from __future__ import annotations

import logging

from celery import shared_task

from .services.credentials import expire_sweep


logger = logging.getLogger(__name__)


@shared_task(autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def expire_withdrawal_credentials() -> int:
    deleted = expire_sweep()
    logger.info("withdrawals.expire_sweep", extra={"deleted": deleted})
    return deleted
