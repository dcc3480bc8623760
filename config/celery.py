import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('clinic')

# 从 Django settings 读取所有 CELERY_ 开头的配置
app.config_from_object('django.conf:settings', namespace='CELERY')

# 自动发现各 app 下的 tasks.py
app.autodiscover_tasks()

app.conf.beat_schedule = {
    # 补齐漏记的 PATIENT_CREATION / FOLLOW_UP 佣金
    'auto-create-missing-commissions': {
        'task': 'commissions.tasks.auto_create_missing_commissions',
        'schedule': crontab(minute='*/15'),
    },
    # 每天凌晨停用已过期的目标（迪拜时间）
    'auto-reset-targets': {
        'task': 'commissions.tasks.auto_reset_targets',
        'schedule': crontab(hour=0, minute=5),
    },
}
