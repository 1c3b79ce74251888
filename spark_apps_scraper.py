import logging
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

from prometheus_client import Counter

from spark_apps_decoder import decode_applications, decode_executors
from spark_exporter_errors import ErrorKind, ScrapeError
from spark_metrics_registry import MetricRegistry

logger = logging.getLogger(__name__)

namespace = "spark"

executor_label_names = ("executor_id",)
application_label_names = ("app_id",)


@dataclass(frozen=True)
class ScrapeResult:
    success: bool
    applications: Tuple = ()
    error: Optional[ErrorKind] = None


def _millis_to_seconds(value):
    return value / 1000.0


# (metric suffix, help, record attribute, converter)
EXECUTOR_GAUGES = (
    ("failed_tasks", "Number of failed tasks", "failed_tasks", None),
    ("total_tasks", "Total number of tasks", "total_tasks", None),
    ("disk_used_bytes", "Disk space used for RDD storage", "disk_used", None),
    ("memory_used_bytes", "Storage memory used", "memory_used", None),
    ("max_memory_bytes", "Total memory available for storage", "max_memory", None),
    ("rdd_blocks", "Number of persisted RDD blocks", "rdd_blocks", None),
    ("total_duration_seconds", "Time spent running tasks", "total_duration", _millis_to_seconds),
    ("total_input_bytes", "Bytes read from input", "total_input_bytes", None),
    ("total_shuffle_read_bytes", "Bytes read by shuffles", "total_shuffle_read", None),
    ("total_shuffle_write_bytes", "Bytes written by shuffles", "total_shuffle_write", None),
)


class SparkAppsScraper(object):
    """Runs fetch-decode-apply cycles against one Spark application UI.

    Fetching and decoding happen outside the registry lock; only the apply
    step is serialized. Each cycle is tagged with the order it started in and
    an apply older than the last one applied is dropped.

    On failure ``up`` drops to 0 and every other instrument keeps the values of
    the last successful scrape.
    """

    def __init__(self, client, registry=None):
        self.client = client
        self.registry = registry if registry is not None else MetricRegistry(namespace)
        self._generation_lock = threading.Lock()
        self._started = 0
        self._applied = 0

        r = self.registry
        self.up = r.gauge("up", "Was the last scrape to Spark successful.")
        self.active_tasks = r.gauge(
            "executor_active_tasks", "Current number of active tasks", executor_label_names)
        self.completed_tasks = r.counter(
            "executor_completedTasks", "Number of completed tasks", executor_label_names)
        self.executor_gauges = [
            (r.gauge("executor_" + suffix, doc, executor_label_names), attr, convert)
            for suffix, doc, attr, convert in EXECUTOR_GAUGES
        ]
        self.app_executors = r.gauge(
            "application_executors", "Number of executors reported, driver included",
            application_label_names)
        self.app_attempts = r.gauge(
            "application_attempts", "Number of application attempts", application_label_names)
        self.app_completed = r.gauge(
            "application_completed", "1 if the latest attempt has completed",
            application_label_names)
        self.app_start_time = r.gauge(
            "application_start_time_seconds", "Start time of the latest attempt",
            application_label_names)
        self.app_end_time = r.gauge(
            "application_end_time_seconds", "End time of the latest attempt, if it ended",
            application_label_names)
        # Outside the registry; failed scrapes leave registry values untouched.
        self.scrape_failures = Counter(
            "exporter_scrape_failures", "Number of failed scrapes by reason", ["reason"],
            namespace=self.registry.namespace, registry=None)

        self.per_scrape_instruments = [self.active_tasks, self.completed_tasks] + [
            g for g, _, _ in self.executor_gauges] + [
            self.app_executors, self.app_attempts, self.app_completed,
            self.app_start_time, self.app_end_time]

    def collect(self):
        """Scrape once and return the registry snapshot."""
        self.scrape()
        return self.registry.snapshot()

    def scrape(self):
        with self._generation_lock:
            self._started += 1
            generation = self._started

        try:
            applications = self._fetch_applications()
        except ScrapeError as e:
            logger.warning("Scrape of %s failed (%s): %s", self.client.base_uri, e.kind.value, e)
            self.scrape_failures.labels(e.kind.value).inc()
            result = ScrapeResult(success=False, error=e.kind)
        else:
            logger.debug("Scraped %d applications, %d executors", len(applications),
                         sum(len(a.executors) for a in applications))
            result = ScrapeResult(success=True, applications=applications)

        self._apply(generation, result)
        return result

    def _fetch_applications(self):
        # One deadline covers every request of the scrape.
        deadline = self.client.new_deadline()
        with self.client.fetch_applications(deadline) as body:
            applications = decode_applications(body)

        complete = []
        for app in applications:
            with self.client.fetch_executors(app.id, deadline) as body:
                complete.append(app.with_executors(decode_executors(body)))
        return tuple(complete)

    def _apply(self, generation, result):
        with self.registry.update() as update:
            if generation < self._applied:
                logger.debug("Dropping scrape %d, scrape %d already applied", generation, self._applied)
                return
            self._applied = generation

            if not result.success:
                update.set(self.up, (), 0)
                return

            for instrument in self.per_scrape_instruments:
                update.reset(instrument)
            seen = {}
            for app in result.applications:
                self._apply_application(update, app)
                for executor in app.executors:
                    if executor.id in seen:
                        logger.warning("Executor %s reported by both %s and %s; keeping %s",
                                       executor.id, seen[executor.id], app.id, app.id)
                    seen[executor.id] = app.id
                    self._apply_executor(update, executor)
            update.set(self.up, (), 1)

    def _apply_application(self, update, app):
        labels = (app.id,)
        update.set(self.app_executors, labels, len(app.executors))
        update.set(self.app_attempts, labels, len(app.attempts))
        attempt = app.latest_attempt
        if attempt is None:
            return
        update.set(self.app_completed, labels, 1 if attempt.completed else 0)
        if attempt.start_epoch is not None:
            update.set(self.app_start_time, labels, attempt.start_epoch)
        if attempt.end_epoch is not None:
            update.set(self.app_end_time, labels, attempt.end_epoch)

    def _apply_executor(self, update, executor):
        labels = (executor.id,)
        update.set(self.active_tasks, labels, executor.active_tasks)
        update.set(self.completed_tasks, labels, executor.completed_tasks)
        for gauge, attr, convert in self.executor_gauges:
            value = getattr(executor, attr)
            update.set(gauge, labels, convert(value) if convert else value)
