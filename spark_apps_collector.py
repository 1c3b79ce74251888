from prometheus_client.core import GaugeMetricFamily, CounterMetricFamily

from spark_metrics_registry import COUNTER


class SparkAppsCollector(object):
  def __init__(self, scraper):
    self.scraper = scraper

  def describe(self):
    # Lets the registry learn metric names without hitting Spark.
    for instrument in self.scraper.registry.instruments:
      yield self.new_family(instrument)
    yield from self.scraper.scrape_failures.describe()

  def collect(self):
    snapshot = self.scraper.collect()
    yield from self.metrics_generator(snapshot)
    yield from self.scraper.scrape_failures.collect()

  def metrics_generator(self, snapshot):
    for instrument in snapshot:
      metric = self.new_family(instrument)
      for labelvalues, value in sorted(instrument.samples.items()):
        metric.add_metric(list(labelvalues), value)
      yield metric

  @staticmethod
  def new_family(instrument):
    if instrument.type == COUNTER:
      return CounterMetricFamily(instrument.name, instrument.documentation,
                                 labels=instrument.labelnames)
    return GaugeMetricFamily(instrument.name, instrument.documentation,
                             labels=instrument.labelnames)
