"""
Visualization utilities for baked viewpoints and match reports using Plotly.

Host-facing diagnostics: nothing in the pipeline calls these. A host builds
the figures from `PipelineCoordinator.bank` and `last_report`, e.g.

    entries = coordinator.bank
    plot_viewpoint_ring([e.view.viewpoint for e in entries], coordinator.last_report).show()
    plot_match_report(coordinator.last_report).show()

Figures are returned, never written to disk.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import plotly.graph_objs as go

from cadmatch.core.data_structures import MatchReport, Viewpoint
from cadmatch.geometry.transforms import camera_center


def viewpoint_camera_centers(viewpoints: Sequence[Viewpoint]) -> np.ndarray:
    """
    Camera positions expressed in the model frame, one per viewpoint.

    The baker keeps the camera fixed and spins the model, so in model
    coordinates each viewpoint is a camera on a ring: C_model = M^-1 @ C_world.

    Returns:
        Array of camera centres (N, 3).
    """
    centers = []
    for vp in viewpoints:
        C = np.append(camera_center(vp.view_matrix), 1.0)
        C_model = np.linalg.inv(vp.model_matrix) @ C
        centers.append(C_model[:3] / C_model[3])
    return np.array(centers) if centers else np.array([]).reshape(0, 3)


def plot_viewpoint_ring(
    viewpoints: Sequence[Viewpoint],
    report: Optional[MatchReport] = None,
) -> go.Figure:
    """
    Create a 3D Plotly visualization of the baked viewpoint ring.

    Args:
        viewpoints: Baked viewpoints, in bank order.
        report: Optional MatchReport; camera markers are coloured by inliers.

    Returns:
        Plotly Figure with the model origin and one marker per viewpoint.
    """
    centers = viewpoint_camera_centers(viewpoints)

    if report is not None and len(report.per_entry) == len(viewpoints):
        colors = [e.inlier_matches for e in report.per_entry]
    else:
        colors = "red"

    # Create figure
    fig = go.Figure()

    fig.add_trace(
        go.Scatter3d(
            x=[0.0],
            y=[0.0],
            z=[0.0],
            mode="markers",
            marker=dict(size=6, color="black"),
            name="Model origin",
        )
    )

    # Add camera centers
    if len(centers) > 0:
        fig.add_trace(
            go.Scatter3d(
                x=centers[:, 0],
                y=centers[:, 1],
                z=centers[:, 2],
                mode="markers+text",
                marker=dict(
                    size=8,
                    color=colors,
                    colorscale="Viridis" if not isinstance(colors, str) else None,
                    symbol="diamond",
                    showscale=not isinstance(colors, str),
                ),
                name="Viewpoints",
                text=[f"{vp.azimuth_deg:.0f}°" for vp in viewpoints],
            )
        )

    # Set layout
    fig.update_layout(
        title="Baked viewpoint ring",
        scene=dict(
            xaxis_title="X",
            yaxis_title="Y",
            zaxis_title="Z",
            aspectmode="data",
        ),
        width=800,
        height=600,
    )

    return fig


def plot_match_report(report: MatchReport) -> go.Figure:
    """
    Bar chart of candidate and inlier matches per bank entry.

    Args:
        report: MatchReport from one compute request.

    Returns:
        Plotly Figure with grouped bars, titled with the match percentage.
    """
    labels = [f"view {e.view_index}" for e in report.per_entry]

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=labels,
            y=[e.candidate_matches for e in report.per_entry],
            name="Candidates",
        )
    )
    fig.add_trace(
        go.Bar(
            x=labels,
            y=[e.inlier_matches for e in report.per_entry],
            name="Inliers",
        )
    )
    fig.update_layout(
        title=f"Match percentage {report.match_percentage:.1f}%",
        barmode="group",
        xaxis_title="Bank entry",
        yaxis_title="Matches",
        width=800,
        height=400,
    )
    return fig


__all__ = ["viewpoint_camera_centers", "plot_viewpoint_ring", "plot_match_report"]
