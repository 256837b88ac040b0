"""Caller-owned cache of converged results for warm-started solves."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from optilap.simulation.mesh import Mesh
from optilap.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarmStartEntry:
    """One stored warm-start result.

    Args:
        result: Converged optimization result.
        version: Per-key version counter, starting at 1.
    """

    result: Any
    version: int


class WarmStartCache:
    """Versioned store of converged results keyed by explicit identifiers.

    The cache is owned by the caller and passed to each solve; it holds no
    global state and is not thread-safe.
    """

    def __init__(self) -> None:
        self._entries: dict[str, WarmStartEntry] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def store(self, key: str, result: Any) -> int:
        """Store a result and bump the key version.

        Args:
            key: Non-empty cache identifier.
            result: Converged optimization result.

        Returns:
            New version of ``key``.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If ``key`` is empty.
        """
        _validate_key(key)
        previous = self._entries.get(key)
        version = 1 if previous is None else previous.version + 1
        self._entries[key] = WarmStartEntry(result=result, version=version)
        logger.debug("Stored warm start %r (version %d)", key, version)
        return version

    def lookup(self, key: str, expected_version: int | None = None) -> Any:
        """Return the stored result of a key.

        Args:
            key: Cache identifier.
            expected_version: Optional version the caller expects.

        Returns:
            Stored optimization result.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the key is missing
                or its version differs from ``expected_version``.
        """
        _validate_key(key)
        entry = self._entries.get(key)
        if entry is None:
            msg = f"no warm start stored under key {key!r}"
            raise ConfigurationError(msg)
        if expected_version is not None and entry.version != expected_version:
            msg = (
                f"warm start {key!r} is at version {entry.version}, "
                f"expected {expected_version}"
            )
            raise ConfigurationError(msg)
        return entry.result

    def version(self, key: str) -> int:
        """Return the current version of a key, ``0`` when absent."""
        entry = self._entries.get(key)
        return 0 if entry is None else entry.version

    def clear(self, key: str | None = None) -> None:
        """Drop one key or, when ``key`` is ``None``, every entry."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


def _validate_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        msg = "warm-start key must be a non-empty string"
        raise ConfigurationError(msg)


def check_warm_start_compatibility(result: Any, mesh: Mesh) -> None:
    """Check that a stored result can seed a solve on ``mesh``.

    Args:
        result: Stored optimization result.
        mesh: Mesh of the new solve.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If point count or
            closedness differ.
    """
    stored_mesh = result.mesh
    if stored_mesh.n_points != mesh.n_points:
        msg = (
            f"warm start has {stored_mesh.n_points} mesh points, "
            f"the solve uses {mesh.n_points}"
        )
        raise ConfigurationError(msg)
    if bool(stored_mesh.closed) != bool(mesh.closed):
        msg = "warm start closedness does not match the mesh"
        raise ConfigurationError(msg)
