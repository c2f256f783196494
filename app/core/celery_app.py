# app/core/celery_app.py
from celery import Celery
from app.config import settings

celery_app = Celery(
    "meterledger",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_time_limit=60*30,          # 30 min hard limit
    task_soft_time_limit=60*25,     # soft limit
    worker_max_tasks_per_child=100, # recycle to contain leaks
    worker_prefetch_multiplier=1,   # imports are long, no prefetch
    result_expires=3600,            # 1h
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    include=["app.workers.tasks.import_tasks"],
)
