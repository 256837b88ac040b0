"""Control-channel parametrizations consumed by the transcription.

Every control channel of a dynamics model is parametrized by exactly one of
three variants:

- ``DontOptimize``: fixed values at every mesh point.
- ``FullMesh``: one free value per mesh point, smoothed by a dissipation
  penalty.
- ``Hypermesh``: free values at coarse breakpoints, linearly interpolated onto
  the mesh (periodically on closed tracks).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

import numpy as np

from optilap.simulation.mesh import Mesh
from optilap.utils.exceptions import ConfigurationError, UnsupportedControlChannelType

DONT_OPTIMIZE = "dont_optimize"
FULL_MESH = "full_mesh"
HYPERMESH = "hypermesh"
VALID_CONTROL_KINDS = (DONT_OPTIMIZE, FULL_MESH, HYPERMESH)


@dataclass(frozen=True)
class DontOptimize:
    """Control channel held at fixed values.

    Args:
        values: Scalar or per-point values. ``None`` uses the steady-state
            reference of the model.
    """

    values: np.ndarray | None = None


@dataclass(frozen=True)
class FullMesh:
    """Control channel with one free value per mesh point.

    Args:
        values: Optional scalar or per-point initial values. ``None`` uses the
            steady-state reference of the model.
        dissipation: Weight of the quadratic smoothness penalty.
        rates: Optional scalar or per-point initial control rates ``du/ds``
            used by the rate formulation.
    """

    values: np.ndarray | None = None
    dissipation: float = 0.0
    rates: np.ndarray | None = None


@dataclass(frozen=True)
class Hypermesh:
    """Control channel with free values at coarse breakpoints.

    Args:
        breakpoints: Strictly increasing breakpoint arclengths [m].
        values: Initial values at the breakpoints.
    """

    breakpoints: np.ndarray
    values: np.ndarray


ControlChannel = Union[DontOptimize, FullMesh, Hypermesh]


def _optional_array(values: Any) -> np.ndarray | None:
    if values is None:
        return None
    return np.array(values, dtype=float)


def create_dont_optimize(values: Any = None) -> DontOptimize:
    """Create a fixed control channel.

    Args:
        values: Scalar or per-point values, or ``None`` for the steady-state
            reference.

    Returns:
        ``DontOptimize`` channel descriptor.
    """
    return DontOptimize(values=_optional_array(values))


def create_full_mesh(values: Any = None, dissipation: float = 0.0, rates: Any = None) -> FullMesh:
    """Create a control channel optimized at every mesh point.

    Args:
        values: Scalar or per-point initial values, or ``None``.
        dissipation: Non-negative smoothness penalty weight.
        rates: Scalar or per-point initial rates, or ``None``.

    Returns:
        ``FullMesh`` channel descriptor.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If ``dissipation`` is
            negative or not finite.
    """
    if not np.isfinite(dissipation) or dissipation < 0.0:
        msg = f"dissipation must be a non-negative finite value, got {dissipation}"
        raise ConfigurationError(msg)
    return FullMesh(
        values=_optional_array(values),
        dissipation=float(dissipation),
        rates=_optional_array(rates),
    )


def create_hypermesh(breakpoints: Any, values: Any) -> Hypermesh:
    """Create a control channel interpolated from coarse breakpoints.

    Args:
        breakpoints: Strictly increasing breakpoint arclengths [m].
        values: Initial values, one per breakpoint.

    Returns:
        ``Hypermesh`` channel descriptor.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If breakpoints are empty,
            not strictly increasing or do not match ``values``.
    """
    breakpoints_array = np.atleast_1d(np.array(breakpoints, dtype=float))
    values_array = np.atleast_1d(np.array(values, dtype=float))
    if breakpoints_array.ndim != 1 or breakpoints_array.size == 0:
        msg = "hypermesh breakpoints must be a non-empty one-dimensional sequence"
        raise ConfigurationError(msg)
    if values_array.shape != breakpoints_array.shape:
        msg = (
            "hypermesh values must match breakpoints, got "
            f"{values_array.size} values for {breakpoints_array.size} breakpoints"
        )
        raise ConfigurationError(msg)
    if not np.all(np.diff(breakpoints_array) > 0.0):
        msg = "hypermesh breakpoints must be strictly increasing"
        raise ConfigurationError(msg)
    return Hypermesh(breakpoints=breakpoints_array, values=values_array)


def channel_kind(channel: Any) -> str:
    """Return the variant identifier of a control channel.

    Args:
        channel: Control-channel descriptor.

    Returns:
        One of ``VALID_CONTROL_KINDS``.

    Raises:
        optilap.utils.exceptions.UnsupportedControlChannelType: If ``channel``
            is not a supported variant.
    """
    if isinstance(channel, DontOptimize):
        return DONT_OPTIMIZE
    if isinstance(channel, FullMesh):
        return FULL_MESH
    if isinstance(channel, Hypermesh):
        return HYPERMESH
    msg = f"unsupported control channel type {type(channel).__name__!r}"
    raise UnsupportedControlChannelType(msg)


def _per_point(values: np.ndarray, n_points: int, label: str) -> np.ndarray:
    """Broadcast scalar values or check per-point length.

    Args:
        values: Scalar or per-point values.
        n_points: Number of mesh points.
        label: Name used in error messages.

    Returns:
        Per-point value array.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If the length does not
            match the mesh.
    """
    if values.ndim == 0 or values.size == 1:
        return np.full(n_points, float(values.reshape(-1)[0]))
    if values.shape != (n_points,):
        msg = f"{label} must be scalar or contain {n_points} values, got shape {values.shape}"
        raise ConfigurationError(msg)
    return values.astype(float)


def validate_control_channel(name: str, channel: Any, mesh: Mesh) -> None:
    """Validate a control channel against a mesh.

    Args:
        name: Control name used in error messages.
        channel: Control-channel descriptor.
        mesh: Collocation mesh.

    Raises:
        optilap.utils.exceptions.UnsupportedControlChannelType: If the
            channel variant is unsupported.
        optilap.utils.exceptions.ConfigurationError: If values or breakpoints
            are inconsistent with the mesh.
    """
    kind = channel_kind(channel)
    if kind == DONT_OPTIMIZE:
        if channel.values is not None:
            _per_point(channel.values, mesh.n_points, f"control {name!r} values")
        return
    if kind == FULL_MESH:
        if channel.values is not None:
            _per_point(channel.values, mesh.n_points, f"control {name!r} values")
        if channel.rates is not None:
            _per_point(channel.rates, mesh.n_points, f"control {name!r} rates")
        if channel.dissipation < 0.0:
            msg = f"control {name!r} dissipation must be non-negative"
            raise ConfigurationError(msg)
        return

    breakpoints = channel.breakpoints
    if breakpoints[0] < 0.0 or breakpoints[-1] > mesh.track_length:
        msg = (
            f"control {name!r} hypermesh breakpoints must lie in "
            f"[0, {mesh.track_length}], got [{breakpoints[0]}, {breakpoints[-1]}]"
        )
        raise ConfigurationError(msg)
    if mesh.closed and breakpoints[-1] >= mesh.track_length:
        msg = f"control {name!r} hypermesh breakpoints must be below L on closed tracks"
        raise ConfigurationError(msg)


def hypermesh_weights(channel: Hypermesh, mesh: Mesh) -> np.ndarray:
    """Return the linear-interpolation matrix from breakpoints onto the mesh.

    Args:
        channel: Hypermesh descriptor.
        mesh: Collocation mesh.

    Returns:
        Matrix ``W`` of shape ``(n_points, n_breakpoints)`` such that mesh
        values are ``W @ breakpoint_values``. Closed meshes interpolate
        periodically with period ``L``; open meshes hold end values flat.
    """
    breakpoint_count = channel.breakpoints.size
    identity = np.eye(breakpoint_count)
    period = mesh.track_length if mesh.closed else None
    columns = [
        np.interp(mesh.arc_length, channel.breakpoints, identity[:, idx], period=period)
        for idx in range(breakpoint_count)
    ]
    return np.column_stack(columns)


def resolve_control_channel(channel: Any, mesh: Mesh, reference: float) -> np.ndarray:
    """Return per-point control values described by a channel.

    Args:
        channel: Control-channel descriptor.
        mesh: Collocation mesh.
        reference: Steady-state reference value used when the channel
            carries no values.

    Returns:
        Per-point control values (initial values for free channels).

    Raises:
        optilap.utils.exceptions.UnsupportedControlChannelType: If the
            channel variant is unsupported.
    """
    kind = channel_kind(channel)
    if kind == HYPERMESH:
        return hypermesh_weights(channel, mesh) @ channel.values
    if channel.values is None:
        return np.full(mesh.n_points, float(reference))
    return _per_point(channel.values, mesh.n_points, "control values")


def resolve_control_rates(channel: FullMesh, mesh: Mesh) -> np.ndarray:
    """Return per-point initial rates of a full-mesh channel.

    Args:
        channel: Full-mesh descriptor.
        mesh: Collocation mesh.

    Returns:
        Per-point rate values, zero when none are given.
    """
    if channel.rates is None:
        return np.zeros(mesh.n_points)
    return _per_point(channel.rates, mesh.n_points, "control rates")
