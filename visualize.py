# visualize.py
import os
import numpy as np
import matplotlib.pyplot as plt

from events import TransferKind


def _ensure_dir(outpath):
    os.makedirs(os.path.dirname(outpath) or ".", exist_ok=True)


def plot_hit_rate_over_time(hit_history, outpath):
    _ensure_dir(outpath)
    hits = np.asarray(hit_history, dtype=float)
    # cumulative hit rate after each access
    rate = np.cumsum(hits) / np.arange(1, len(hits) + 1) if len(hits) else hits
    plt.figure(figsize=(8,4))
    plt.plot(rate, linewidth=0.8)
    plt.title("Cumulative Hit Rate")
    plt.xlabel("Access Index")
    plt.ylabel("Hit Rate")
    plt.ylim(0, 1)
    plt.grid(True)
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()

def plot_hit_miss_rate(hit_rate, outpath):
    _ensure_dir(outpath)
    plt.figure(figsize=(4,4))
    labels = ['Hit', 'Miss']
    sizes = [hit_rate, 1.0 - hit_rate]
    plt.pie(sizes, labels=labels, autopct='%1.1f%%')
    plt.title("Cache Hit/Miss Rate")
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()

def plot_transfer_breakdown(words_moved, outpath):
    """Bar chart of words moved per transfer kind (keys as in EventLog.summary)."""
    _ensure_dir(outpath)
    names = [kind.name.lower() for kind in TransferKind]
    counts = [words_moved.get(name, 0) for name in names]
    plt.figure(figsize=(8,4))
    plt.bar([name.replace("_", " ") for name in names], counts)
    plt.title("Words Moved by Transfer Kind")
    plt.ylabel("Words")
    plt.xticks(rotation=20)
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()
