# cache.py
import enum
import logging
import numbers
from dataclasses import dataclass

from events import EventLog, Stats, TransferKind
from memory import MemoryAccessError

logger = logging.getLogger(__name__)

MAX_CACHE_LINES = 256

# main memory stores int64 words
MIN_WORD = -(1 << 63)
MAX_WORD = (1 << 63) - 1


class ConfigurationError(ValueError):
    pass


class InvariantViolation(AssertionError):
    pass


class AccessKind(enum.Enum):
    FETCH = "fetch"
    LOAD = "load"
    STORE = "store"


def is_power_of_two(n):
    return isinstance(n, int) and not isinstance(n, bool) and n > 0 and n & (n - 1) == 0


def check_word(value):
    """Return `value` as an int that main memory can hold, or raise ValueError."""
    if value is None:
        raise ValueError("store needs a value")
    if not isinstance(value, numbers.Integral) or isinstance(value, bool):
        raise ValueError(f"store value must be an integer, got {value!r}")
    value = int(value)
    if not MIN_WORD <= value <= MAX_WORD:
        raise ValueError(f"store value {value} does not fit in a 64-bit word")
    return value


@dataclass(frozen=True)
class CacheGeometry:
    """Shape of the cache, fixed at construction."""
    block_size_words: int = 1
    num_sets: int = 1
    associativity: int = 1

    def __post_init__(self):
        for name in ("block_size_words", "num_sets", "associativity"):
            value = getattr(self, name)
            if not is_power_of_two(value):
                raise ConfigurationError(f"{name} must be a positive power of two, got {value!r}")
        if self.num_lines > MAX_CACHE_LINES:
            raise ConfigurationError(
                f"num_sets * associativity = {self.num_lines} exceeds the limit of {MAX_CACHE_LINES} blocks"
            )

    @property
    def num_lines(self):
        return self.num_sets * self.associativity

    @property
    def offset_bits(self):
        return self.block_size_words.bit_length() - 1

    @property
    def index_bits(self):
        return self.num_sets.bit_length() - 1


def decompose(addr, geometry):
    """Split a word address into (tag, set_index, offset)."""
    offset = addr & (geometry.block_size_words - 1)
    set_index = (addr >> geometry.offset_bits) & (geometry.num_sets - 1)
    tag = addr >> (geometry.offset_bits + geometry.index_bits)
    return tag, set_index, offset


def reconstruct(tag, set_index, geometry):
    """Base address of the block holding `tag` in `set_index`."""
    return ((tag << geometry.index_bits) | set_index) << geometry.offset_bits


class CacheLine:
    def __init__(self, block_size_words, lru_rank):
        self.valid = False
        self.dirty = False
        self.tag = -1
        self.lru_rank = lru_rank
        self.data = [0] * block_size_words

    @property
    def state(self):
        if not self.valid:
            return "invalid"
        return "dirty" if self.dirty else "clean"

    def __repr__(self):
        return f"CacheLine({self.state}, tag={self.tag}, lru={self.lru_rank})"


class CacheSet:
    """
    The ways of one set plus their LRU order.
    lru_rank 0 is the most recently used way, associativity-1 the next
    victim. Ranks always form a permutation of 0..associativity-1; fresh
    sets start as way 0 oldest so empty ways fill in order.
    """

    def __init__(self, associativity, block_size_words):
        self.associativity = associativity
        self.lines = [CacheLine(block_size_words, associativity - 1 - way) for way in range(associativity)]

    def __len__(self):
        return len(self.lines)

    def __getitem__(self, way):
        if not 0 <= way < self.associativity:
            raise IndexError(f"way {way} out of range [0, {self.associativity})")
        return self.lines[way]

    def find(self, tag):
        match = None
        for way, line in enumerate(self.lines):
            if line.valid and line.tag == tag:
                if match is not None:
                    raise InvariantViolation(f"tag {tag} valid in ways {match} and {way}")
                match = way
        return match

    def touch(self, way):
        """Make `way` the most recently used, aging everything that was newer."""
        rank = self[way].lru_rank
        for line in self.lines:
            if line.lru_rank < rank:
                line.lru_rank += 1
        self.lines[way].lru_rank = 0

    def victim(self):
        """Way to replace: the oldest empty way if there is one, else the LRU way."""
        empty = [way for way, line in enumerate(self.lines) if not line.valid]
        if empty:
            return max(empty, key=lambda way: self.lines[way].lru_rank)
        oldest = self.associativity - 1
        for way, line in enumerate(self.lines):
            if line.lru_rank == oldest:
                return way
        raise InvariantViolation(f"no way holds lru rank {oldest}: {self.lines}")

    def check(self):
        ranks = sorted(line.lru_rank for line in self.lines)
        if ranks != list(range(self.associativity)):
            raise InvariantViolation(f"lru ranks {ranks} are not a permutation")
        tags = [line.tag for line in self.lines if line.valid]
        if len(tags) != len(set(tags)):
            raise InvariantViolation(f"duplicate valid tags {tags}")
        for line in self.lines:
            if line.dirty and not line.valid:
                raise InvariantViolation(f"dirty line is not valid: {line}")


class CacheStore:
    """
    Sets x ways array of cache lines.
    lookup() is where hits and misses are counted.
    """

    def __init__(self, geometry: CacheGeometry, stats: Stats = None):
        self.geometry = geometry
        self.stats = stats if stats is not None else Stats()
        self.sets = [CacheSet(geometry.associativity, geometry.block_size_words) for _ in range(geometry.num_sets)]

    def __getitem__(self, set_index):
        if not 0 <= set_index < self.geometry.num_sets:
            raise IndexError(f"set {set_index} out of range [0, {self.geometry.num_sets})")
        return self.sets[set_index]

    def line(self, set_index, way):
        return self[set_index][way]

    def lookup(self, set_index, tag):
        way = self[set_index].find(tag)
        if way is None:
            self.stats.record_miss()
        else:
            self.stats.record_hit()
        return way

    def read(self, set_index, way, offset):
        return self.line(set_index, way).data[self._offset(offset)]

    def write(self, set_index, way, offset, word):
        line = self.line(set_index, way)
        if not line.valid:
            raise InvariantViolation(f"write to invalid line in set {set_index}, way {way}")
        line.data[self._offset(offset)] = word
        line.dirty = True

    def install_line(self, set_index, way, tag, data):
        data = list(data)
        if len(data) != self.geometry.block_size_words:
            raise ValueError(f"block needs {self.geometry.block_size_words} words, got {len(data)}")
        line = self.line(set_index, way)
        line.tag = tag
        line.data = data
        line.valid = True
        line.dirty = False

    def clean(self, set_index, way):
        self.line(set_index, way).dirty = False

    def invalidate_all(self):
        for _, _, line in self:
            if line.dirty:
                raise InvariantViolation(f"invalidating dirty line {line}")
            line.valid = False

    def check_invariants(self):
        for cache_set in self.sets:
            cache_set.check()

    def occupancy(self):
        return sum(1 for _, _, line in self if line.valid)

    def _offset(self, offset):
        if not 0 <= offset < self.geometry.block_size_words:
            raise IndexError(f"offset {offset} out of range [0, {self.geometry.block_size_words})")
        return offset

    def __iter__(self):
        for set_index, cache_set in enumerate(self.sets):
            for way, line in enumerate(cache_set.lines):
                yield set_index, way, line


class CacheController:
    """
    Write-back, write-allocate, LRU set-associative cache in front of `memory`.
    Every access completes any eviction and fill before returning.
    Call flush() (or leave the `with` block) before dropping the cache,
    otherwise stores still held in dirty lines never reach memory.
    The `with` block flushes on every exit except an InvariantViolation,
    where the cached state can no longer be trusted.
    """

    def __init__(self, geometry: CacheGeometry, memory, events: EventLog = None, stats: Stats = None,
                 check_invariants=True):
        if len(memory) % geometry.block_size_words:
            raise ConfigurationError(
                f"memory of {len(memory)} words is not a whole number of {geometry.block_size_words}-word blocks"
            )
        self.geometry = geometry
        self.memory = memory
        self.events = events if events is not None else EventLog()
        self.store = CacheStore(geometry, stats)
        self.check_invariants = check_invariants

    @property
    def stats(self):
        return self.store.stats

    def access(self, addr, kind, value=None):
        """
        Perform one fetch, load or store at word address `addr`.
        Returns the word read, or for a store the word written.
        """
        kind = AccessKind(kind)
        if kind is AccessKind.STORE:
            value = check_word(value)
        if not self.memory.in_range(addr):
            raise MemoryAccessError(f"Address {addr} out of range [0, {len(self.memory)})")

        tag, set_index, offset = decompose(addr, self.geometry)
        way = self.store.lookup(set_index, tag)
        if way is None:
            logger.debug("%s miss at %d (set %d, tag %d)", kind.value, addr, set_index, tag)
            way = self._allocate(set_index, tag)
        else:
            logger.debug("%s hit at %d (set %d, way %d)", kind.value, addr, set_index, way)
        self.store[set_index].touch(way)

        if kind is AccessKind.STORE:
            self.store.write(set_index, way, offset, value)
            self.events.record(addr, 1, TransferKind.PROCESSOR_TO_CACHE)
            result = value
        else:
            result = self.store.read(set_index, way, offset)
            self.events.record(addr, 1, TransferKind.CACHE_TO_PROCESSOR)

        if self.check_invariants:
            self.store[set_index].check()
        return result

    def fetch(self, addr):
        return self.access(addr, AccessKind.FETCH)

    def load(self, addr):
        return self.access(addr, AccessKind.LOAD)

    def store_word(self, addr, value):
        return self.access(addr, AccessKind.STORE, value)

    def _allocate(self, set_index, tag):
        way = self.store[set_index].victim()
        self._evict(set_index, way)

        base = reconstruct(tag, set_index, self.geometry)
        data = self.memory.read_block(base, self.geometry.block_size_words)
        self.events.record(base, self.geometry.block_size_words, TransferKind.MEMORY_TO_CACHE)
        self.store.install_line(set_index, way, tag, data)
        logger.debug("filled block %d into set %d, way %d", base, set_index, way)
        return way

    def _evict(self, set_index, way):
        line = self.store.line(set_index, way)
        if not line.valid:
            return
        if line.dirty:
            self._write_back(set_index, way)
        else:
            base = reconstruct(line.tag, set_index, self.geometry)
            self.events.record(base, self.geometry.block_size_words, TransferKind.CACHE_TO_NOWHERE)
            logger.debug("discarded clean block %d from set %d, way %d", base, set_index, way)

    def _write_back(self, set_index, way):
        line = self.store.line(set_index, way)
        base = reconstruct(line.tag, set_index, self.geometry)
        self.memory.write_block(base, line.data)
        self.events.record(base, self.geometry.block_size_words, TransferKind.CACHE_TO_MEMORY)
        self.store.clean(set_index, way)
        logger.debug("wrote back block %d from set %d, way %d", base, set_index, way)

    def flush(self):
        """Write back every dirty line, then invalidate the whole cache. Returns the write-back count."""
        written = 0
        for set_index, way, line in self.store:
            if line.dirty:
                self._write_back(set_index, way)
                written += 1
        self.store.invalidate_all()
        logger.debug("flushed cache, %d blocks written back", written)
        return written

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None or not issubclass(exc_type, InvariantViolation):
            self.flush()
        return False

    def stats_summary(self):
        return {
            "block_size_words": self.geometry.block_size_words,
            "num_sets": self.geometry.num_sets,
            "associativity": self.geometry.associativity,
            "valid_lines": self.store.occupancy(),
            **self.stats.as_dict(),
        }
