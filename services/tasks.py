"""
Cloud Tasks integration for async heavy work
Keeps request handlers fast by offloading assessments and visitor enrichment
"""
import os, json, hmac, hashlib, logging, time
import datetime
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from services.feature_flags import cloud_tasks_enabled

logger = logging.getLogger(__name__)

PROJECT_ID = os.getenv("PROJECT_ID", "split-prod")
REGION = os.getenv("REGION", "us-central1")
QUEUE_NAME = os.getenv("TASKS_QUEUE", "split-async")
BASE_URL = os.getenv("BASE_URL", "http://localhost:8080")

def _tasks_secret() -> str:
    return os.getenv("TASKS_HMAC_SECRET", "")

def sign_payload(payload: dict) -> str:
    """HMAC-SHA256 over the sorted-key JSON body"""
    secret = _tasks_secret()
    if not secret:
        raise RuntimeError("TASKS_HMAC_SECRET is not configured")
    message = json.dumps(payload, sort_keys=True).encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()

def verify_task_signature(signature: str, payload: dict) -> bool:
    """Verify task signature"""
    if not signature or not _tasks_secret():
        return False
    try:
        return hmac.compare_digest(signature, sign_payload(payload))
    except (TypeError, ValueError) as e:
        logger.error(f"Signature verification failed: {e}")
        return False

class TaskScheduler:
    def __init__(self, client=None):
        self._client = client
        self._queue_path = None

    @property
    def client(self):
        # created on first enqueue so importing the app needs no GCP credentials
        if self._client is None:
            self._client = tasks_v2.CloudTasksClient()
        return self._client

    @property
    def queue_path(self) -> str:
        if self._queue_path is None:
            self._queue_path = self.client.queue_path(PROJECT_ID, REGION, QUEUE_NAME)
        return self._queue_path

    async def enqueue_task(self, endpoint: str, payload: dict, delay_seconds: int = 0) -> str:
        """Enqueue async task"""
        try:
            task = {
                "http_request": {
                    "http_method": tasks_v2.HttpMethod.POST,
                    "url": f"{BASE_URL}{endpoint}",
                    "headers": {
                        "Content-Type": "application/json",
                        "X-Tasks-Signature": sign_payload(payload)
                    },
                    "body": json.dumps(payload).encode()
                }
            }

            if delay_seconds > 0:
                d = datetime.datetime.utcnow() + datetime.timedelta(seconds=delay_seconds)
                timestamp = timestamp_pb2.Timestamp()
                timestamp.FromDatetime(d)
                task["schedule_time"] = timestamp

            response = self.client.create_task(parent=self.queue_path, task=task)
            logger.info(f"Task enqueued: {endpoint} -> {response.name}")
            return response.name

        except Exception as e:
            logger.error(f"Failed to enqueue task {endpoint}: {e}")
            raise

# Global task scheduler instance
task_scheduler = TaskScheduler()

async def dispatch(background_tasks: BackgroundTasks, endpoint: str, payload: dict,
                   local_job: Callable, *args: Any) -> Optional[str]:
    """
    Send work to Cloud Tasks when enabled, otherwise (or if the enqueue fails)
    run local_job(*args) after the response is sent
    """
    if cloud_tasks_enabled():
        try:
            return await task_scheduler.enqueue_task(endpoint, payload)
        except Exception as e:
            logger.warning(f"Falling back to in-process job for {endpoint}: {e}")
    background_tasks.add_task(local_job, *args)
    return None

def assessment_payload(assessment_id: str) -> dict:
    return {"assessment_id": str(assessment_id), "timestamp": int(time.time())}

def enrichment_payload(workspace_id: str, ip: str, page: str = None, referrer: str = None) -> dict:
    return {
        "workspace_id": str(workspace_id),
        "ip": ip,
        "page": page,
        "referrer": referrer,
        "timestamp": int(time.time()),
    }
