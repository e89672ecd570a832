import numpy as np
import matplotlib.pyplot as plt
from pathlib import Path

from idivc.io.sinks import DEFAULT_TREE, read_reduced

def save_time_hist_png(
    path: str,
    out_png: str | None = None,
    tree_name: str = DEFAULT_TREE,
    bins: int = 200,
):
    """Histogram timeid and timeiv (events with a hit only) from a reduced file."""
    cols = read_reduced(path, tree_name)

    if out_png is None:
        out_png = str(Path(path).with_suffix(".png"))

    fig, axes = plt.subplots(1, 2, figsize=(10, 4))
    for ax, key, pmt_key in zip(axes, ("timeid", "timeiv"), ("firstidpmt", "firstivpmt")):
        t = np.asarray(cols[key], dtype=np.float64)[np.asarray(cols[pmt_key]) >= 0]
        ax.hist(t, bins=bins)
        ax.set_xlabel(f"{key} [clock units]")
        ax.set_ylabel("events")
        ax.set_title(f"{key}: {t.size} of {len(cols[key])} events")
    fig.suptitle(Path(path).name + " : " + tree_name)
    fig.tight_layout()
    fig.savefig(out_png, dpi=150)
    plt.close(fig)
    return out_png
