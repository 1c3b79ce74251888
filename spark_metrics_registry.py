"""Metric instruments whose label/value mappings are replaced one update at a time.

Writers stage a full copy of the committed mappings, modify it in isolation
and swap it in with a single reference assignment when the update finishes.
Readers take a snapshot of whatever mapping is committed, without locking,
and so see either all of an update or none of it.
"""

import logging
import threading
from contextlib import contextmanager
from types import MappingProxyType

logger = logging.getLogger(__name__)

GAUGE = "gauge"
COUNTER = "counter"


class Instrument(object):
    """A named metric family with a fixed label schema."""

    def __init__(self, name, documentation, typ, labelnames=()):
        self.name = name
        self.documentation = documentation
        self.type = typ
        self.labelnames = tuple(labelnames)

    def label_key(self, labelvalues):
        labelvalues = tuple(str(v) for v in labelvalues)
        if len(labelvalues) != len(self.labelnames):
            raise ValueError("{} expects labels {}, got {}".format(
                self.name, self.labelnames, labelvalues))
        return labelvalues

    def __repr__(self):
        return "Instrument({!r}, {!r}, {})".format(self.name, self.type, self.labelnames)


class InstrumentSnapshot(object):
    """Read-only view of one instrument's samples."""

    def __init__(self, instrument, samples):
        self.name = instrument.name
        self.documentation = instrument.documentation
        self.type = instrument.type
        self.labelnames = instrument.labelnames
        self.samples = MappingProxyType(samples)


class RegistrySnapshot(object):
    """Consistent, immutable view of all instruments at one point in time."""

    def __init__(self, instruments, values):
        self._instruments = tuple(
            InstrumentSnapshot(i, values.get(i.name, {})) for i in instruments)
        self._by_name = {i.name: i for i in self._instruments}

    def __iter__(self):
        return iter(self._instruments)

    def __contains__(self, name):
        return name in self._by_name

    def __getitem__(self, name):
        return self._by_name[name]

    def samples(self, name):
        return dict(self._by_name[name].samples)

    def get(self, name, labelvalues=(), default=None):
        key = tuple(str(v) for v in labelvalues)
        return self._by_name[name].samples.get(key, default)

    def as_dict(self):
        return {i.name: dict(i.samples) for i in self._instruments}


class RegistryUpdate(object):
    """Staged changes to a registry, applied all at once on commit."""

    def __init__(self, instruments, committed):
        self._instruments = instruments
        self._values = {name: dict(samples) for name, samples in committed.items()}

    def _samples(self, instrument):
        if self._instruments.get(instrument.name) is not instrument:
            raise ValueError("{!r} is not registered here".format(instrument))
        return self._values.setdefault(instrument.name, {})

    def reset(self, instrument):
        """Drop every series of ``instrument``."""
        self._samples(instrument).clear()

    def set(self, instrument, labelvalues, value):
        self._samples(instrument)[instrument.label_key(labelvalues)] = float(value)

    def inc(self, instrument, labelvalues=(), delta=1):
        if instrument.type == COUNTER and delta < 0:
            raise ValueError("Counters can only be incremented by non-negative amounts.")
        samples = self._samples(instrument)
        key = instrument.label_key(labelvalues)
        samples[key] = samples.get(key, 0.0) + float(delta)

    def values(self):
        return self._values


class MetricRegistry(object):
    """The exporter's instrument set and their current values."""

    def __init__(self, namespace):
        self.namespace = namespace
        self._instruments = {}
        self._committed = {}
        self._write_lock = threading.Lock()
        self._sealed = False

    def _register(self, name, documentation, typ, labelnames):
        full_name = "{}_{}".format(self.namespace, name) if self.namespace else name
        with self._write_lock:
            if self._sealed:
                raise ValueError("Cannot register {} after the first update".format(full_name))
            if full_name in self._instruments:
                raise ValueError("Duplicated instrument name: {}".format(full_name))
            if len(set(labelnames)) != len(labelnames):
                raise ValueError("Duplicated label names for {}".format(full_name))
            instrument = Instrument(full_name, documentation, typ, labelnames)
            self._instruments[full_name] = instrument
        return instrument

    def gauge(self, name, documentation, labelnames=()):
        return self._register(name, documentation, GAUGE, tuple(labelnames))

    def counter(self, name, documentation, labelnames=()):
        return self._register(name, documentation, COUNTER, tuple(labelnames))

    @property
    def instruments(self):
        return tuple(self._instruments.values())

    @contextmanager
    def update(self):
        """Stage an update under the write lock; commit it if the block succeeds."""
        with self._write_lock:
            self._sealed = True
            staged = RegistryUpdate(self._instruments, self._committed)
            yield staged
            self._committed = staged.values()

    def snapshot(self):
        return RegistrySnapshot(self._instruments.values(), self._committed)
