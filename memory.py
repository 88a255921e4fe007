# memory.py
import re

import numpy as np

NUM_MEMORY = 65536  # words of main memory

_IMAGE_LINE = re.compile(r"^\s*([-+]?\d+)")


class MemoryAccessError(IndexError):
    pass


class Memory:
    """
    Flat word-addressed main memory.
    The cache moves whole blocks through read_block/write_block, one word
    at a time in increasing address order.
    """

    def __init__(self, size=NUM_MEMORY):
        if size <= 0:
            raise ValueError("Memory size must be greater than 0")
        self.size = size
        self.words = np.zeros(size, dtype=np.int64)
        self.num_loaded = 0
        self.reads = 0
        self.writes = 0

    @classmethod
    def from_file(cls, path, size=NUM_MEMORY):
        """Load a memory image: one decimal word per line, starting at address 0."""
        with open(path, "r") as f:
            lines = f.read().splitlines()
        memory = cls(size)
        memory.load(_parse_image(lines))
        return memory

    def load(self, words):
        words = list(words)
        if len(words) > self.size:
            raise ValueError("Program too big for memory")
        self.words[: len(words)] = words
        self.num_loaded = len(words)

    def __len__(self):
        return self.size

    def in_range(self, address):
        return 0 <= address < self.size

    def _check(self, address):
        if not self.in_range(address):
            raise MemoryAccessError(f"Address {address} out of range [0, {self.size})")

    def read_word(self, address):
        self._check(address)
        self.reads += 1
        return int(self.words[address])

    def write_word(self, address, word):
        self._check(address)
        self.writes += 1
        self.words[address] = word

    def read_block(self, base, count):
        return [self.read_word(base + i) for i in range(count)]

    def write_block(self, base, data):
        for i, word in enumerate(data):
            self.write_word(base + i, word)

    def dump(self, count=None):
        count = self.num_loaded if count is None else count
        return [int(w) for w in self.words[:count]]


def _parse_image(lines):
    words = []
    for lineno, line in enumerate(lines, start=1):
        # blank lines still occupy an address
        if not line.strip():
            words.append(0)
            continue
        match = _IMAGE_LINE.match(line)
        if not match:
            raise ValueError(f"Can't parse line {lineno}: {line!r}")
        words.append(int(match.group(1)))
    return words
