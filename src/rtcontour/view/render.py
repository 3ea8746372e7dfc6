"""Module for rendering a label slice with its contours using matplotlib."""

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np

from rtcontour.config import ContourSettings
from rtcontour.contours.smoother import smooth_polygon
from rtcontour.contours.tracer import trace_polygons
from rtcontour.contours.types import ContourPolygon, SmoothingLevel

logger = logging.getLogger(__name__)

# Default color palette (same order every time)
DEFAULT_COLORS = [
    (1.0, 0.0, 0.0),  # Red
    (0.0, 1.0, 0.0),  # Green
    (0.0, 0.0, 1.0),  # Blue
    (1.0, 1.0, 0.0),  # Yellow
    (1.0, 0.0, 1.0),  # Magenta
    (0.0, 1.0, 1.0),  # Cyan
]


def slice_contours(
    label_slice: np.ndarray,
    foreground_id: int = 1,
    background_id: int = 0,
    level: Union[SmoothingLevel, str] = SmoothingLevel.LARGE,
    settings: Optional[ContourSettings] = None,
) -> list:
    """Trace one slice and smooth its polygons for display.

    Unlike extraction, any smoothing level is accepted here, LARGE included.
    """
    settings = settings or ContourSettings()
    level = SmoothingLevel.parse(level)
    return [
        ContourPolygon(
            smooth_polygon(
                polygon,
                level,
                strength=settings.large_smoothing_strength,
                iterations=settings.large_smoothing_iterations,
            ),
            polygon.enclosed_pixels,
        )
        for polygon in trace_polygons(label_slice, foreground_id, background_id)
    ]


def render_slice_contours(
    label_slice: np.ndarray,
    contours: Optional[Sequence[ContourPolygon]] = None,
    output_path: Optional[Union[str, Path]] = None,
    level: Union[SmoothingLevel, str] = SmoothingLevel.LARGE,
    *,
    foreground_id: int = 1,
    background_id: int = 0,
    settings: Optional[ContourSettings] = None,
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 100,
    cmap: str = "gray",
) -> plt.Figure:
    """Draw a label slice with its contours on top.

    :param np.ndarray label_slice: 2D label grid indexed [y, x].
    :param Optional[Sequence[ContourPolygon]] contours: Polygons to draw. If None, the slice is traced
        and smoothed at ``level``, defaults to None
    :param Optional[Union[str, Path]] output_path: If provided, save the figure to this path, defaults to None
    :param Union[SmoothingLevel, str] level: Smoothing used when tracing, defaults to LARGE
    :param int foreground_id: Label to contour when tracing, defaults to 1
    :param int background_id: Background label when tracing, defaults to 0
    :param Optional[ContourSettings] settings: Provides the LARGE smoothing parameters, defaults to None
    :param Optional[Tuple[float, float]] figsize: Figure size in inches, defaults to a size matching the slice.
    :param int dpi: Resolution, defaults to 100
    :param str cmap: Colormap for the slice, defaults to "gray"
    :return plt.Figure: The figure, already closed for display.
    """
    label_slice = np.asarray(label_slice)
    if label_slice.ndim != 2:
        raise ValueError(f"Expected a 2D slice, got {label_slice.ndim} dimensions")

    if contours is None:
        contours = slice_contours(label_slice, foreground_id, background_id, level, settings)

    height, width = label_slice.shape
    if figsize is None:
        base_size = 6
        figsize = (base_size, base_size * height / width) if width >= height else (base_size * width / height, base_size)

    fig, ax = plt.subplots(figsize=figsize, dpi=dpi)
    # Pixel centres sit on integer coordinates, contours on pixel edges.
    ax.imshow(label_slice, cmap=cmap, origin="upper", interpolation="nearest", extent=(-0.5, width - 0.5, height - 0.5, -0.5))

    for idx, polygon in enumerate(contours):
        if len(polygon) == 0:
            continue
        closed = np.vstack([polygon.points, polygon.points[:1]])
        ax.plot(closed[:, 0], closed[:, 1], color=DEFAULT_COLORS[idx % len(DEFAULT_COLORS)], linewidth=1.5)

    ax.set_xlim(-0.5, width - 0.5)
    ax.set_ylim(height - 0.5, -0.5)
    ax.axis("off")
    plt.tight_layout(pad=0)

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0)
        logger.info(f"Saved contour rendering to {output_path}")

    plt.close(fig)
    return fig
