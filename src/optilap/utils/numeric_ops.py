"""Backend operation bundles for numeric-type generic evaluation.

The transcription evaluator and the dynamics models are written once against
``NumericOps`` and run either on plain NumPy values or on differentiable
``torch`` tensors.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np


@dataclass(frozen=True)
class NumericOps:
    """Backend operation bundle consumed by numeric-generic code.

    Each callable maps one mathematical primitive to backend-specific
    implementation details (NumPy or Torch).
    """

    name: str
    sin: Callable[[Any], Any]
    cos: Callable[[Any], Any]
    sqrt: Callable[[Any], Any]
    stack: Callable[[Sequence[Any]], Any]
    concatenate: Callable[[Sequence[Any], int], Any]
    asarray: Callable[[Any], Any]
    zeros: Callable[[tuple[int, ...]], Any]
    sum: Callable[[Any], Any]
    to_numpy: Callable[[Any], np.ndarray]


def _numpy_stack(values: Sequence[Any]) -> np.ndarray:
    if len(values) == 0:
        return np.zeros(0, dtype=float)
    return np.stack([np.asarray(value, dtype=float) for value in values])


NUMPY_OPS = NumericOps(
    name="numpy",
    sin=np.sin,
    cos=np.cos,
    sqrt=np.sqrt,
    stack=_numpy_stack,
    concatenate=lambda parts, axis: np.concatenate(
        [np.asarray(part, dtype=float) for part in parts], axis=axis
    ),
    asarray=lambda value: np.asarray(value, dtype=float),
    zeros=lambda shape: np.zeros(shape, dtype=float),
    sum=lambda value: np.sum(value),
    to_numpy=lambda value: np.asarray(value, dtype=float),
)


def build_torch_ops(*, torch: Any, dtype: Any, device: Any) -> NumericOps:
    """Build torch operation bundle for numeric-generic evaluation.

    Args:
        torch: Imported torch module.
        dtype: Tensor dtype used for created tensors.
        device: Target torch device.

    Returns:
        ``NumericOps`` instance backed by torch tensor primitives.
    """

    def _to_value(value: Any) -> Any:
        return torch.as_tensor(value, dtype=dtype, device=device)

    def _stack(values: Sequence[Any]) -> Any:
        if len(values) == 0:
            return torch.zeros(0, dtype=dtype, device=device)
        return torch.stack([_to_value(value).reshape(()) for value in values])

    return NumericOps(
        name="torch",
        sin=lambda value: torch.sin(_to_value(value)),
        cos=lambda value: torch.cos(_to_value(value)),
        sqrt=lambda value: torch.sqrt(_to_value(value)),
        stack=_stack,
        concatenate=lambda parts, axis: torch.cat([_to_value(part) for part in parts], dim=axis),
        asarray=_to_value,
        zeros=lambda shape: torch.zeros(shape, dtype=dtype, device=device),
        sum=lambda value: torch.sum(_to_value(value)),
        to_numpy=lambda value: np.asarray(value.detach().cpu().numpy(), dtype=float),
    )


def is_tensor(value: Any) -> bool:
    """Return whether ``value`` is a torch tensor without importing torch.

    Args:
        value: Arbitrary value.

    Returns:
        ``True`` if torch is loaded and ``value`` is a ``torch.Tensor``.
    """
    torch = sys.modules.get("torch")
    return torch is not None and isinstance(value, torch.Tensor)


def resolve_ops(*values: Any) -> NumericOps:
    """Select the operation bundle matching the numeric type of ``values``.

    Args:
        *values: Values participating in one evaluation.

    Returns:
        Torch bundle if any value is a tensor, otherwise the NumPy bundle.
    """
    for value in values:
        if is_tensor(value):
            torch = sys.modules["torch"]
            return build_torch_ops(torch=torch, dtype=value.dtype, device=value.device)
    return NUMPY_OPS
