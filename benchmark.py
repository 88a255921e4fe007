# benchmark.py
import os
import json
import time
import threading
import numpy as np
from cache import AccessKind, CacheController, CacheGeometry
from events import EventLog
from memory import Memory, NUM_MEMORY


class BenchmarkRunner:
    """
    Drives a synthetic load/store trace through the cache and checks that
    every load sees the last value stored to that address.
    Workers share one cache; a single lock serializes whole accesses.
    """

    def __init__(self, cfg):
        self.cfg = cfg
        bench_cfg = cfg.get("benchmark", {})
        self.rng = np.random.default_rng(bench_cfg.get("random_seed", None))
        cache_cfg = cfg.get("cache", {})
        self.geometry = CacheGeometry(
            block_size_words=cache_cfg.get("block_size_words", 4),
            num_sets=cache_cfg.get("num_sets", 16),
            associativity=cache_cfg.get("associativity", 4),
        )
        self.memory = Memory(cfg.get("memory", {}).get("num_words", NUM_MEMORY))
        self.events = EventLog(keep_events=False)
        self.cache = CacheController(self.geometry, self.memory, self.events)

        self.working_set_words = min(bench_cfg.get("working_set_words", 1024), len(self.memory))
        self.num_requests = bench_cfg.get("num_requests", 10000)
        self.num_threads = max(1, bench_cfg.get("num_threads", 4))
        self.read_ratio = bench_cfg.get("read_ratio", 0.8)
        self.access_pattern = bench_cfg.get("access_pattern", "mixed")

        self.cache_lock = threading.Lock()
        self.shadow = {}
        self.hit_history = []
        self.mismatches = 0

    def generate_trace(self):
        """Return (addresses, is_store, values) arrays for the whole run."""
        n = self.num_requests
        ws = self.working_set_words
        if self.access_pattern == "sequential":
            addrs = np.arange(n) % ws
        elif self.access_pattern == "random":
            addrs = self.rng.integers(0, ws, n)
        elif self.access_pattern == "mixed":
            # mostly sequential with some random
            sequential = self.rng.random(n) < 0.8
            pointer = (np.cumsum(sequential) - 1) % ws
            addrs = np.where(sequential, pointer, self.rng.integers(0, ws, n))
        else:
            raise ValueError(f"Unknown access pattern: {self.access_pattern}")
        is_store = self.rng.random(n) >= self.read_ratio
        values = self.rng.integers(0, 1 << 16, n)
        return addrs.astype(np.int64), is_store, values

    def _worker(self, addrs, is_store, values):
        local_history = []
        local_mismatches = 0
        for addr, store, value in zip(addrs.tolist(), is_store.tolist(), values.tolist()):
            with self.cache_lock:
                hits_before = self.cache.stats.hits
                if store:
                    self.cache.access(addr, AccessKind.STORE, value)
                    self.shadow[addr] = value
                else:
                    word = self.cache.access(addr, AccessKind.LOAD)
                    if word != self.shadow.get(addr, 0):
                        local_mismatches += 1
                local_history.append(self.cache.stats.hits - hits_before)

        with self.cache_lock:
            self.hit_history.extend(local_history)
            self.mismatches += local_mismatches

    def run(self):
        addrs, is_store, values = self.generate_trace()
        chunks = np.array_split(np.arange(len(addrs)), self.num_threads)
        threads = []
        start = time.time()
        for idx in chunks:
            t = threading.Thread(target=self._worker, args=(addrs[idx], is_store[idx], values[idx]))
            t.start()
            threads.append(t)
        for t in threads:
            t.join()
        written_back = self.cache.flush()
        end = time.time()

        memory_mismatches = sum(1 for addr, value in self.shadow.items() if self.memory.read_word(addr) != value)
        stats = self.cache.stats
        duration = end - start
        summary = {
            "total_requests": stats.accesses,
            "hits": stats.hits,
            "misses": stats.misses,
            "hit_rate": stats.hit_rate(),
            "flush_write_backs": written_back,
            "words_moved": self.events.summary(),
            "load_mismatches": self.mismatches,
            "memory_mismatches": memory_mismatches,
            "throughput_ops_per_sec": stats.accesses / duration if duration > 0 else 0,
            "duration_s": duration,
        }
        return summary, self.hit_history

    def save_results(self, summary, out_cfg):
        results_dir = out_cfg.get("results_dir", "results")
        os.makedirs(results_dir, exist_ok=True)
        path = os.path.join(results_dir, "summary.json")
        with open(path, "w") as f:
            json.dump(summary, f, indent=2)
        return path
