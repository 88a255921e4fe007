# events.py
import collections
import enum


class TransferKind(enum.Enum):
    CACHE_TO_PROCESSOR = "from the cache to the processor"
    PROCESSOR_TO_CACHE = "from the processor to the cache"
    MEMORY_TO_CACHE = "from the memory to the cache"
    CACHE_TO_MEMORY = "from the cache to the memory"
    CACHE_TO_NOWHERE = "from the cache to nowhere"


TransferEvent = collections.namedtuple("TransferEvent", ["address", "size", "kind"])


def format_transfer(event):
    """Render one transfer the way the simulator reports it on stdout."""
    last = event.address + event.size - 1
    return f"transferring word [{event.address}-{last}] {event.kind.value}"


class EventLog:
    """
    Collects every data transfer the cache performs.
    `address` is the first word moved, `size` the number of words.
    Listeners are called with each TransferEvent as it is recorded.
    """

    def __init__(self, listeners=None, keep_events=False):
        self.listeners = list(listeners or [])
        self.keep_events = keep_events
        self.events = []
        self.counts = collections.Counter()
        self.words = collections.Counter()

    def record(self, address, size, kind):
        event = TransferEvent(address, size, kind)
        if self.keep_events:
            self.events.append(event)
        self.counts[kind] += 1
        self.words[kind] += size
        for listener in self.listeners:
            listener(event)
        return event

    def add_listener(self, listener):
        self.listeners.append(listener)

    def words_moved(self, kind):
        return self.words[kind]

    def summary(self):
        return {kind.name.lower(): self.words[kind] for kind in TransferKind}

    def clear(self):
        self.events.clear()
        self.counts.clear()
        self.words.clear()

    def __len__(self):
        return sum(self.counts.values())


class Stats:
    """Running hit/miss counters, one increment per processor-visible access."""

    def __init__(self):
        self.hits = 0
        self.misses = 0

    def record_hit(self):
        self.hits += 1

    def record_miss(self):
        self.misses += 1

    @property
    def accesses(self):
        return self.hits + self.misses

    def hit_rate(self):
        return self.hits / self.accesses if self.accesses else 0

    def as_dict(self):
        return {
            "hits": self.hits,
            "misses": self.misses,
            "accesses": self.accesses,
            "hit_rate": self.hit_rate(),
        }

    def __repr__(self):
        return f"Stats(hits={self.hits}, misses={self.misses})"
