import logging

from celery import shared_task
from django.db import InterfaceError, OperationalError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,   # 初始重试延迟（秒），指数退避会乘以 2^retry_count
    acks_late=True,           # 任务执行完才 ack，防止 worker 崩溃时任务丢失
    reject_on_worker_lost=True,
)
def auto_create_missing_commissions(self, start_date=None, end_date=None):
    """
    补齐请求链路里漏记的 PATIENT_CREATION / FOLLOW_UP 佣金。

    由 celery beat 每 15 分钟触发一次；check-then-create，重复执行是安全的。
    只有数据库瞬时错误才重试（10s → 20s → 40s）。
    """
    from commissions.dates import parse_window
    from commissions.ledger import backfill_missing_commissions

    logger.info("[Celery][auto_create_missing_commissions] start (attempt %d/%d)",
                self.request.retries + 1, self.max_retries + 1)

    window = parse_window(start_date, end_date) if (start_date or end_date) else None
    try:
        summary = backfill_missing_commissions(window)
    except (OperationalError, InterfaceError) as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning("[Celery] backfill failed (%s), retrying in %ds", exc, countdown)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery] backfill gave up after %d retries: %s", self.max_retries, exc)
        raise

    logger.info("[Celery][auto_create_missing_commissions] done: %s", summary)
    return summary


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    acks_late=True,
    reject_on_worker_lost=True,
)
def auto_reset_targets(self):
    """每天凌晨停用 end_date 已过的目标（迪拜时间）。"""
    from commissions.targets import auto_reset_targets as reset

    try:
        count = reset()
    except (OperationalError, InterfaceError) as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning("[Celery] target reset failed (%s), retrying in %ds", exc, countdown)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery] target reset gave up after %d retries: %s", self.max_retries, exc)
        raise

    logger.info("[Celery][auto_reset_targets] deactivated %d targets", count)
    return {'deactivated': count}
