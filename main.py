# main.py
import argparse
import json
import logging
import os
import sys
from benchmark import BenchmarkRunner
from cache import CacheController, CacheGeometry, ConfigurationError
from events import EventLog, format_transfer
from memory import Memory, MemoryAccessError, NUM_MEMORY
from processor import Processor, SimulationError
from visualize import plot_hit_miss_rate, plot_hit_rate_over_time, plot_transfer_breakdown

DEFAULT_CONFIG = {
    "cache": {"block_size_words": 4, "num_sets": 16, "associativity": 4},
    "memory": {"num_words": NUM_MEMORY},
    "benchmark": {
        "num_requests": 10000,
        "num_threads": 4,
        "read_ratio": 0.8,
        "access_pattern": "mixed",
        "working_set_words": 1024,
        "random_seed": None,
    },
    "output": {"results_dir": "results"},
}

def load_config(path="config.json"):
    cfg = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    if path and os.path.exists(path):
        with open(path, "r") as f:
            for section, values in json.load(f).items():
                cfg.setdefault(section, {}).update(values)
    return cfg

def build_parser():
    parser = argparse.ArgumentParser(description="Set-associative write-back cache simulator")
    parser.add_argument("-f", "--file", help="memory image to run (one word per line)")
    parser.add_argument("-b", "--block-size", type=int, help="block size in words")
    parser.add_argument("-s", "--num-sets", type=int, help="number of sets")
    parser.add_argument("-a", "--associativity", type=int, help="ways per set")
    parser.add_argument("-c", "--config", default="config.json", help="JSON config file")
    parser.add_argument("--max-instructions", type=int, default=None)
    parser.add_argument("--quiet", action="store_true", help="do not print each transfer")
    parser.add_argument("--plots", action="store_true", help="save benchmark plots")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser

def run_program(args, cfg):
    cache_cfg = cfg["cache"]
    geometry = CacheGeometry(cache_cfg["block_size_words"], cache_cfg["num_sets"], cache_cfg["associativity"])
    memory = Memory.from_file(args.file, cfg["memory"].get("num_words", NUM_MEMORY))
    events = EventLog(keep_events=False)
    if not args.quiet:
        events.add_listener(lambda event: print(format_transfer(event)))
    proc = Processor(CacheController(geometry, memory, events))
    proc.run(max_instructions=args.max_instructions)
    print("machine halted")
    print(f"total of {proc.instructions} instructions executed")
    print(f"Hits: {proc.cache.stats.hits}")
    print(f"Misses: {proc.cache.stats.misses}")

def run_benchmark(args, cfg):
    runner = BenchmarkRunner(cfg)
    print("Starting benchmark with config:", cfg["benchmark"])
    summary, hit_history = runner.run()
    results_path = runner.save_results(summary, cfg["output"])
    print("Benchmark Summary:", summary)
    print("Results saved to:", results_path)

    if args.plots:
        out_cfg = cfg["output"]
        results_dir = out_cfg.get("results_dir", "results")
        plot_hit_rate_over_time(hit_history, out_cfg.get("hitrate_plot", os.path.join(results_dir, "hit_rate.png")))
        plot_hit_miss_rate(summary["hit_rate"], out_cfg.get("hitmiss_plot", os.path.join(results_dir, "hit_miss_rate.png")))
        plot_transfer_breakdown(summary["words_moved"], out_cfg.get("transfers_plot", os.path.join(results_dir, "transfers.png")))
        print(f"Plots saved in {results_dir}/")

def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING, format='%(levelname)s: %(message)s')

    cfg = load_config(args.config)
    for key, value in (("block_size_words", args.block_size), ("num_sets", args.num_sets), ("associativity", args.associativity)):
        if value is not None:
            cfg["cache"][key] = value

    try:
        if args.file:
            run_program(args, cfg)
        else:
            run_benchmark(args, cfg)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError, MemoryAccessError, SimulationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
