import logging
from typing import Dict, Optional

from redis.exceptions import RedisError
from rq import get_current_job
from rq.exceptions import NoSuchJobError
from rq.job import Job

from certprep.core.config import settings
from certprep.core.database import Database
from certprep.core.errors import NotFoundError, UpstreamServiceError
from certprep.jobs.queue import get_queue, get_redis
from certprep.services.diagrams import DiagramService
from certprep.services.llm import LLMService

logger = logging.getLogger(__name__)


def generate_diagram_job(question_id: int, database_url: Optional[str] = None) -> str:
    job = get_current_job()
    if job:
        job.meta.update({"state": "running", "question_id": question_id}); job.save_meta()
    database = Database(database_url)
    db = database.session()
    try:
        filename = DiagramService(db, LLMService(db)).generate(question_id)
    except Exception:
        if job:
            job.meta.update({"state": "failed"}); job.save_meta()
        raise
    finally:
        db.close()
        database.dispose()
    if job:
        job.meta.update({"state": "done", "filename": filename}); job.save_meta()
    return filename


def enqueue_diagram(question_id: int) -> Optional[str]:
    """Queue diagram generation for one question. Returns the job id, or None if the queue is unreachable."""
    try:
        job = get_queue().enqueue(
            generate_diagram_job, question_id, settings.DATABASE_URL, job_timeout=settings.DIAGRAM_JOB_TIMEOUT
        )
    except RedisError as e:
        logger.error("Diagram job for Q%s not queued: %s", question_id, e)
        return None
    return job.id



def diagram_job_status(job_id: str) -> Dict:
    try:
        job = Job.fetch(job_id, connection=get_redis())
        status = job.get_status()
    except NoSuchJobError:
        raise NotFoundError(f"Job {job_id} not found")
    except RedisError as e:
        raise UpstreamServiceError(f"Job queue unavailable: {e}") from e
    meta = job.meta or {}
    state = meta.get("state") or (status.value if status else "unknown")
    return {
        "job_id": job.id,
        "state": state,
        "question_id": meta.get("question_id"),
        "filename": meta.get("filename") if state == "done" else None,
    }
