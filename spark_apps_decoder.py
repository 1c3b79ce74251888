"""Decode Spark REST API responses into application and executor records.

Unknown fields are ignored. A missing ``id``, a missing executor counter or a
field with the wrong JSON type rejects the whole response, so no partial set
of records is produced and no counter is reported as a zero it never was.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime

import pytz

from spark_exporter_errors import DecodeError

SPARK_TIMESTAMP_SUFFIX = "GMT"
SPARK_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"
EPOCH = pytz.utc.localize(datetime(1970, 1, 1))

EXECUTOR_INT_FIELDS = (
    ("activeTasks", "active_tasks"),
    ("completedTasks", "completed_tasks"),
    ("failedTasks", "failed_tasks"),
    ("totalTasks", "total_tasks"),
    ("diskUsed", "disk_used"),
    ("memoryUsed", "memory_used"),
    ("maxMemory", "max_memory"),
    ("rddBlocks", "rdd_blocks"),
    ("totalDuration", "total_duration"),
    ("totalInputBytes", "total_input_bytes"),
    ("totalShuffleRead", "total_shuffle_read"),
    ("totalShuffleWrite", "total_shuffle_write"),
)


@dataclass(frozen=True)
class AttemptRecord:
    completed: bool = False
    start_time: str = ""
    end_time: str = ""
    spark_user: str = ""

    @property
    def start_epoch(self):
        return to_epoch_seconds(self.start_time)

    @property
    def end_epoch(self):
        return to_epoch_seconds(self.end_time)


@dataclass(frozen=True)
class ExecutorLogs:
    stderr: str = ""
    stdout: str = ""


@dataclass(frozen=True)
class ExecutorRecord:
    id: str
    active_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    total_tasks: int = 0
    disk_used: int = 0
    memory_used: int = 0
    max_memory: int = 0
    rdd_blocks: int = 0
    total_duration: int = 0
    total_input_bytes: int = 0
    total_shuffle_read: int = 0
    total_shuffle_write: int = 0
    host_port: str = ""
    logs: ExecutorLogs = field(default_factory=ExecutorLogs)


@dataclass(frozen=True)
class ApplicationRecord:
    id: str
    name: str = ""
    attempts: tuple = ()
    executors: tuple = ()

    @property
    def latest_attempt(self):
        """Spark lists attempts newest first."""
        return self.attempts[0] if self.attempts else None

    def with_executors(self, executors):
        return replace(self, executors=tuple(executors))


def parse_spark_timestamp(value):
    """Parse a Spark REST timestamp such as ``2018-01-01T10:00:00.000GMT``."""
    if not value.endswith(SPARK_TIMESTAMP_SUFFIX):
        raise ValueError("timestamp {!r} is not in GMT".format(value))
    naive = datetime.strptime(value[:-len(SPARK_TIMESTAMP_SUFFIX)], SPARK_TIMESTAMP_FORMAT)
    return pytz.utc.localize(naive)


def to_epoch_seconds(value):
    """Seconds since the epoch, or None for an empty or unset timestamp.

    Spark reports a running attempt's end time as one millisecond before the
    epoch.
    """
    if not value:
        return None
    seconds = (parse_spark_timestamp(value) - EPOCH).total_seconds()
    if seconds < 0:
        return None
    return seconds


def decode_applications(chunks):
    """Decode the ``/api/v1/applications`` response."""
    items = _load_list(chunks, "applications")
    return tuple(_decode_application(item, i) for i, item in enumerate(items))


def decode_executors(chunks):
    """Decode the ``/api/v1/applications/<id>/executors`` response."""
    items = _load_list(chunks, "executors")
    return tuple(_decode_executor(item, i) for i, item in enumerate(items))


def _load_list(chunks, what):
    try:
        payload = json.loads(b"".join(chunks))
    except ValueError as e:
        raise DecodeError("Invalid JSON in {} response: {}".format(what, e)) from e
    if not isinstance(payload, list):
        raise DecodeError("Expected a JSON array of {}, got {}".format(what, type(payload).__name__))
    return payload


def _decode_application(item, index):
    where = "application[{}]".format(index)
    _require_object(item, where)
    attempts = item.get("attempts")
    if attempts is None:
        attempts = []
    if not isinstance(attempts, list):
        raise DecodeError("{}.attempts is not an array".format(where))
    return ApplicationRecord(
        id=_required_id(item, where),
        name=_optional(item, "name", str, where, ""),
        attempts=tuple(_decode_attempt(a, "{}.attempts[{}]".format(where, i))
                       for i, a in enumerate(attempts)),
    )


def _decode_attempt(item, where):
    _require_object(item, where)
    attempt = AttemptRecord(
        completed=_optional(item, "completed", bool, where, False),
        start_time=_optional(item, "startTime", str, where, ""),
        end_time=_optional(item, "endTime", str, where, ""),
        spark_user=_optional(item, "sparkUser", str, where, ""),
    )
    for name in ("start_time", "end_time"):
        try:
            to_epoch_seconds(getattr(attempt, name))
        except ValueError as e:
            raise DecodeError("{}: bad {}: {}".format(where, name, e)) from e
    return attempt


def _decode_executor(item, index):
    where = "executor[{}]".format(index)
    _require_object(item, where)
    values = {attr: _required_int(item, key, where) for key, attr in EXECUTOR_INT_FIELDS}

    logs = item.get("executorLogs")
    if logs is None:
        logs = {}
    _require_object(logs, where + ".executorLogs")
    return ExecutorRecord(
        id=_required_id(item, where),
        host_port=_optional(item, "hostPort", str, where, ""),
        logs=ExecutorLogs(
            stderr=_optional(logs, "stderr", str, where + ".executorLogs", ""),
            stdout=_optional(logs, "stdout", str, where + ".executorLogs", ""),
        ),
        **values
    )


def _require_object(item, where):
    if not isinstance(item, dict):
        raise DecodeError("{} is not a JSON object".format(where))


def _required_id(item, where):
    value = item.get("id")
    if not isinstance(value, str) or not value:
        raise DecodeError("{} has no string id".format(where))
    return value


def _optional(item, key, expected, where, default):
    if key not in item or item[key] is None:
        return default
    value = item[key]
    # bool is an int subclass; JSON true is never a task count.
    if expected is int and isinstance(value, bool):
        raise DecodeError("{}.{} is not an integer: {!r}".format(where, key, value))
    if not isinstance(value, expected):
        raise DecodeError("{}.{} is not {}: {!r}".format(where, key, expected.__name__, value))
    return value


def _required_int(item, key, where):
    if item.get(key) is None:
        raise DecodeError("{} has no {}".format(where, key))
    return _optional(item, key, int, where, 0)
