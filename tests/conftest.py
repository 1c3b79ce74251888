import json
import threading
import time
from contextlib import contextmanager

import pytest

from spark_apps_scraper import SparkAppsScraper


def make_executor(executor_id, active_tasks=0, completed_tasks=0, **fields):
    executor = {
        "id": executor_id,
        "hostPort": "worker-{}:7078".format(executor_id),
        "rddBlocks": 0,
        "memoryUsed": 1024,
        "diskUsed": 0,
        "activeTasks": active_tasks,
        "failedTasks": 0,
        "completedTasks": completed_tasks,
        "totalTasks": active_tasks + completed_tasks,
        "totalDuration": 1500,
        "totalInputBytes": 2048,
        "totalShuffleRead": 0,
        "totalShuffleWrite": 0,
        "maxMemory": 384093388,
        "executorLogs": {
            "stdout": "http://worker:8081/logPage/?logType=stdout",
            "stderr": "http://worker:8081/logPage/?logType=stderr",
        },
        "isActive": True,
    }
    executor.update(fields)
    return executor


def make_application(app_id, name="test-app", completed=False):
    return {
        "id": app_id,
        "name": name,
        "attempts": [{
            "startTime": "2018-01-01T10:00:00.000GMT",
            "endTime": "2018-01-01T11:00:00.000GMT" if completed else "1969-12-31T23:59:59.999GMT",
            "lastUpdated": "2018-01-01T10:00:00.000GMT",
            "duration": 0,
            "sparkUser": "spark",
            "completed": completed,
        }],
    }


def to_chunks(payload):
    raw = json.dumps(payload).encode("utf-8")
    return [raw[:10], raw[10:]]


class FakeSparkClient(object):
    """Stands in for SparkApiClient, serving canned JSON payloads.

    ``applications`` is a payload or an exception to raise; ``executors`` maps
    application ids to payloads or exceptions.
    """

    base_uri = "http://spark.test:4040"
    timeout = 5

    def __init__(self, applications=None, executors=None):
        self.applications = applications if applications is not None else []
        self.executors = executors if executors is not None else {}
        self.opened = 0
        self.closed = 0
        self.deadlines = []
        self._lock = threading.Lock()

    @contextmanager
    def _serve(self, payload):
        if isinstance(payload, Exception):
            raise payload
        with self._lock:
            self.opened += 1
        try:
            yield iter(to_chunks(payload))
        finally:
            with self._lock:
                self.closed += 1

    def new_deadline(self):
        return time.monotonic() + self.timeout

    def fetch_applications(self, deadline=None):
        self.deadlines.append(deadline)
        return self._serve(self.applications)

    def fetch_executors(self, app_id, deadline=None):
        self.deadlines.append(deadline)
        return self._serve(self.executors.get(app_id, []))


@pytest.fixture
def two_executor_client():
    return FakeSparkClient(
        applications=[make_application("app-20180101100000-0000")],
        executors={
            "app-20180101100000-0000": [
                make_executor("1", active_tasks=3, completed_tasks=10),
                make_executor("2", active_tasks=0, completed_tasks=5),
            ],
        },
    )


@pytest.fixture
def scraper(two_executor_client):
    return SparkAppsScraper(two_executor_client)
