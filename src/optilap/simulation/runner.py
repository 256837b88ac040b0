"""End-to-end minimum-lap-time orchestration."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

import numpy as np

from optilap.simulation.config import OptimalLaptimeConfig
from optilap.simulation.evaluator import TranscriptionEvaluator
from optilap.simulation.formulation import TranscriptionFormulation, build_formulation
from optilap.simulation.mesh import Mesh
from optilap.simulation.nlp import NlpProblem, build_autodiff_jacobian, solve_nlp
from optilap.simulation.postprocess import OptimizationResult, build_optimization_result
from optilap.simulation.warm_start import WarmStartCache, check_warm_start_compatibility
from optilap.utils.exceptions import ConfigurationError, InvalidMeshSpecification
from optilap.vehicle.model_api import DynamicsModel

logger = logging.getLogger(__name__)

TRACK_LENGTH_TOLERANCE = 1e-9


def _check_mesh(model: DynamicsModel, mesh: Mesh, config: OptimalLaptimeConfig) -> None:
    """Check that mesh, track and configuration describe the same lap.

    Raises:
        optilap.utils.exceptions.InvalidMeshSpecification: If closedness or
            track length disagree.
    """
    mesh.validate()
    if bool(mesh.closed) != bool(config.closed):
        msg = f"mesh closed={mesh.closed} does not match config closed={config.closed}"
        raise InvalidMeshSpecification(msg)
    track_length = float(model.track.track_length())
    if abs(track_length - mesh.track_length) > TRACK_LENGTH_TOLERANCE * max(1.0, track_length):
        msg = (
            f"mesh track length {mesh.track_length} does not match "
            f"the model track length {track_length}"
        )
        raise InvalidMeshSpecification(msg)


def _resolve_initial_guess(
    mesh: Mesh,
    config: OptimalLaptimeConfig,
    initial_guess: Any,
    warm_start_cache: WarmStartCache | None,
    warm_start_key: str | None,
) -> Any:
    """Select the explicit guess or the cached warm start.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If warm starting is
            requested without cache or key, combined with an explicit guess,
            or the cached result does not fit the mesh.
    """
    needs_cache = config.warm_start or config.save_warm_start
    if needs_cache and (warm_start_cache is None or not warm_start_key):
        msg = "warm_start and save_warm_start require warm_start_cache and warm_start_key"
        raise ConfigurationError(msg)
    if not config.warm_start:
        return initial_guess
    if initial_guess is not None:
        msg = "initial_guess cannot be combined with warm_start"
        raise ConfigurationError(msg)

    guess = warm_start_cache.lookup(warm_start_key)
    check_warm_start_compatibility(guess, mesh)
    logger.debug(
        "Warm starting from %r (version %d)",
        warm_start_key,
        warm_start_cache.version(warm_start_key),
    )
    return guess


def _solve_formulation(
    formulation: TranscriptionFormulation,
    config: OptimalLaptimeConfig,
    guess: Any,
) -> OptimizationResult:
    """Build the NLP of a formulation, solve it and decode the optimum.

    Args:
        formulation: Transcription layout of the solve.
        config: Validated solve configuration.
        guess: Optional previous result or trajectory guess.

    Returns:
        Decoded optimization result without sensitivities.
    """
    evaluator = TranscriptionEvaluator(formulation)
    x_lower, x_upper = formulation.variable_bounds()
    g_lower, g_upper = formulation.constraint_bounds()
    fg_jacobian = None
    if config.solver.derivative_method == "autodiff":
        fg_jacobian = build_autodiff_jacobian(evaluator.fg)

    problem = NlpProblem(
        fg=lambda x: evaluator.fg(np.asarray(x, dtype=float)),
        x0=formulation.initial_guess(guess),
        x_lower=x_lower,
        x_upper=x_upper,
        g_lower=g_lower,
        g_upper=g_upper,
        fg_jacobian=fg_jacobian,
    )
    solution = solve_nlp(problem, config.solver, config.runtime)
    return build_optimization_result(formulation, solution)


def solve_optimal_laptime(
    model: DynamicsModel,
    mesh: Mesh,
    config: OptimalLaptimeConfig,
    *,
    initial_guess: Any = None,
    warm_start_cache: WarmStartCache | None = None,
    warm_start_key: str | None = None,
) -> OptimizationResult:
    """Compute the minimum-lap-time trajectory of a model on a mesh.

    Configuration, mesh, initial condition, control channels and warm-start
    availability are validated before the solver runs.

    Args:
        model: Dynamics model implementing ``DynamicsModel``.
        mesh: Collocation mesh on the model's track.
        config: Solve configuration.
        initial_guess: Optional previous result or
            :class:`~optilap.simulation.formulation.TrajectoryGuess`.
        warm_start_cache: Caller-owned cache used by ``warm_start`` and
            ``save_warm_start``.
        warm_start_key: Cache identifier of this problem.

    Returns:
        Converged optimization result, with sensitivities when requested.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If configuration, model,
            controls or warm start are inconsistent.
        optilap.utils.exceptions.InvalidMeshSpecification: If the mesh does
            not match the configuration or track.
        optilap.utils.exceptions.InvalidInitialCondition: If the initial
            condition has wrong vector sizes.
        optilap.utils.exceptions.OptimizationDidNotConverge: If the solver
            fails.
    """
    config.validate()
    model.validate()
    _check_mesh(model, mesh, config)
    guess = _resolve_initial_guess(mesh, config, initial_guess, warm_start_cache, warm_start_key)
    formulation = build_formulation(model, mesh, config)

    logger.info(
        "Solving optimal laptime: %s formulation, %d points, closed=%s",
        formulation.kind,
        mesh.n_points,
        mesh.closed,
    )
    result = _solve_formulation(formulation, config, guess)
    logger.info("Lap time %.4f s after %d iterations", result.lap_time, result.iterations)

    if config.compute_sensitivity:
        from optilap.analysis.sensitivity import compute_parameter_sensitivities

        baseline = result

        def resolve(variant: DynamicsModel) -> OptimizationResult:
            return _solve_formulation(build_formulation(variant, mesh, config), config, baseline)

        sensitivities = compute_parameter_sensitivities(
            formulation,
            result,
            method=config.sensitivity_method,
            numerics=config.sensitivity,
            resolve=resolve,
        )
        result = replace(result, sensitivities=sensitivities)

    if config.save_warm_start:
        version = warm_start_cache.store(warm_start_key, result)
        logger.debug("Saved warm start %r (version %d)", warm_start_key, version)
    return result
