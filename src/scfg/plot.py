import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt


def plot_training_trace(trace, out_path, grammar_name=None):
    """Save a plot of the corpus log-likelihood at each objective evaluation."""
    plt.figure(figsize=(4.8, 3))
    plt.plot(range(1, len(trace) + 1), trace, color="#002FD8", linewidth=1.5)
    plt.xlabel("Objective evaluation")
    plt.ylabel("Log-likelihood")
    if grammar_name:
        plt.title(f"Training {grammar_name}")
    plt.tight_layout()

    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    plt.savefig(out_path, dpi=300)
    plt.close()
    return out_path
