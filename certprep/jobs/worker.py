import logging

from rq import Worker

from certprep.core.config import settings
from certprep.jobs.queue import get_redis

if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    w = Worker([settings.RQ_QUEUE], connection=get_redis())
    w.work(with_scheduler=True)
