from __future__ import annotations
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

from .envelope import FixedEnvelope


def plot_envelope(
    envelope: FixedEnvelope,
    *,
    color: str = "C0",
    ax=None,
    relative: bool = False,
    annotate_top: int = 0,
    save_path: str | None = None,
    dpi: int = 300,
    figsize: tuple = (6, 2.5),
):
    """
    Stick spectrum of an envelope: one vertical line per peak.

    Parameters
    ----------
    envelope : FixedEnvelope
    color : str
        Line color.
    ax : matplotlib Axes or None
        Draw into this axes; a new figure is created if None.
    relative : bool
        If True, scale the tallest peak to 1.
    annotate_top : int
        Label the masses of this many most probable peaks.
    save_path : str or None
        If provided, saves the figure. Extension determines format (e.g., .pdf, .png).
    dpi : int
    figsize : tuple
        Figure size when a new figure is created.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize, dpi=dpi, constrained_layout=True)
    else:
        fig = ax.figure

    masses = np.asarray(envelope.masses, dtype=float)
    heights = np.asarray(envelope.probs, dtype=float)
    if relative and heights.size and heights.max() > 0:
        heights = heights / heights.max()

    ax.vlines(masses, 0.0, heights, color=color, lw=0.8)
    ax.set_xlabel("mass (Da)", fontsize=8)
    ax.set_ylabel("relative intensity" if relative else "probability", fontsize=8)
    ax.tick_params(axis='both', which='both', labelsize=8, top=False, left=True)
    ax.set_ylim(bottom=0.0)
    sns.despine(ax=ax)

    if annotate_top > 0 and heights.size:
        for i in np.argsort(heights)[::-1][:annotate_top]:
            ax.annotate(f"{masses[i]:.4f}", (masses[i], heights[i]),
                        textcoords="offset points", xytext=(0, 2),
                        ha="center", fontsize=6, color=color)

    if save_path:
        fig.savefig(save_path, bbox_inches="tight", dpi=dpi)

    return fig, ax
