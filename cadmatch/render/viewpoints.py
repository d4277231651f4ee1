"""
Canonical viewpoint ring and the bake step that renders the mesh from it.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import Mesh, RenderedView, Viewpoint
from cadmatch.geometry.transforms import look_at, perspective, rotation_y, scale_matrix
from cadmatch.render.offscreen import OffscreenRenderer

logger = logging.getLogger(__name__)


def generate_viewpoints(config: Optional[MatchConfig] = None) -> List[Viewpoint]:
    """
    Build the fixed azimuth sweep around the model's Y axis.

    The camera stays put at ``config.eye`` looking at ``config.target``; the
    model is scaled then spun, i.e. ``M = Scale(s) @ RotY(theta)``.

    Args:
        config: Pipeline configuration (defaults: 8 views, 0..315 step 45).

    Returns:
        List of Viewpoints in azimuth order.
    """
    config = config or MatchConfig()

    view = look_at(config.eye, config.target, config.up)
    projection = perspective(config.fov_y_deg, config.aspect, config.near, config.far)
    scale = scale_matrix(config.model_scale)

    viewpoints = []
    for angle in config.azimuths_deg:
        viewpoints.append(
            Viewpoint(
                azimuth_deg=float(angle),
                model_matrix=scale @ rotation_y(angle),
                view_matrix=view.copy(),
                projection_matrix=projection.copy(),
            )
        )
    return viewpoints


def bake(
    mesh: Mesh,
    viewpoints: Optional[Sequence[Viewpoint]] = None,
    renderer: Optional[OffscreenRenderer] = None,
    config: Optional[MatchConfig] = None,
) -> List[RenderedView]:
    """
    Render the mesh once per viewpoint.

    Args:
        mesh: Mesh to render.
        viewpoints: Viewpoints to use; the canonical ring when None.
        renderer: Renderer to draw with. When None a temporary one is
            created for this call and released afterwards.
        config: Pipeline configuration.

    Returns:
        One RenderedView per viewpoint, in the same order.

    Raises:
        RenderError: If the renderer cannot be created or used.
    """
    config = config or MatchConfig()
    if viewpoints is None:
        viewpoints = generate_viewpoints(config)

    owns_renderer = renderer is None
    if renderer is None:
        renderer = OffscreenRenderer(mesh, config)

    views = []
    try:
        for idx, viewpoint in enumerate(viewpoints):
            image = renderer.render_viewpoint(viewpoint)
            views.append(RenderedView(view_index=idx, image=image, viewpoint=viewpoint))
            logger.debug("[bake] view %d (azimuth %.1f deg) rendered", idx, viewpoint.azimuth_deg)
    finally:
        if owns_renderer:
            renderer.release()

    logger.info("[bake] baked %d reference views", len(views))
    return views


__all__ = ["generate_viewpoints", "bake"]
