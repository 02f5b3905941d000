from rq import Worker

from examprep.core.config import get_settings
from examprep.core.logs import configure_logging
from examprep.jobs.queue import get_queue

if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings)
    queue = get_queue(settings)
    w = Worker([queue], connection=queue.connection)
    w.work(with_scheduler=True)
