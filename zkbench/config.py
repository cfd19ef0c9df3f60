"""
zkbench configuration.

Defines environment-specific configuration classes for the benchmark
harness.  Each class captures where the service under test lives, how the
concurrency sweep is shaped, how often the server process is sampled and
which staged load profile to run.  The ``get_config`` factory selects the
right class based on the ``ZKBENCH_ENV`` environment variable (or an
explicit key), and every command-line flag uses the selected class's value
as its default.

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor style deployability
- Separate testing configuration with tiny durations and a fake host
"""

from __future__ import annotations

import os
from pathlib import Path

# Directory of this package; the default profiles file ships beside it.
PACKAGE_DIR = Path(__file__).resolve().parent


def parse_levels(text: str) -> tuple[int, ...]:
    """
    Parse a comma-separated concurrency sequence such as ``"1,10,20"``.

    Args:
        text: Comma-separated positive integers.

    Returns:
        The levels as a tuple, in the order given.

    Raises:
        ValueError: If the text is empty, contains a non-integer or
            non-positive value, or is not strictly ascending.
    """
    parts = [part.strip() for part in text.split(",") if part.strip()]
    if not parts:
        raise ValueError("At least one concurrency level is required")

    try:
        levels = tuple(int(part) for part in parts)
    except ValueError as exc:
        raise ValueError(f"Concurrency levels must be integers: {text!r}") from exc

    validate_levels(levels)
    return levels


def validate_levels(levels: tuple[int, ...] | list[int]) -> None:
    """Raise ``ValueError`` unless *levels* are positive and strictly ascending."""
    if not levels:
        raise ValueError("At least one concurrency level is required")
    if any(level <= 0 for level in levels):
        raise ValueError(f"Concurrency levels must be positive: {list(levels)}")
    if any(later <= earlier for earlier, later in zip(levels, levels[1:])):
        raise ValueError(f"Concurrency levels must be strictly ascending: {list(levels)}")


class Config:
    """
    Base (shared) configuration for the harness.

    All environment-specific classes inherit from ``Config`` so that
    common defaults only need to be stated once.  Individual settings
    can be overridden by environment variables.
    """

    # Root URL of the ZK-Auth service under test.
    BASE_URL: str = os.environ.get("ZKBENCH_BASE_URL", "http://localhost:8080")

    # Route layout of the service: "standard" or "optimised".
    ROUTES: str = os.environ.get("ZKBENCH_ROUTES", "standard")

    # ---- Concurrency sweep ------------------------------------------
    CONCURRENCY_LEVELS: tuple[int, ...] = parse_levels(
        os.environ.get("ZKBENCH_CONCURRENCY", "1,10,15,20,25,30")
    )
    PHASE_DURATION: float = float(os.environ.get("ZKBENCH_DURATION", "15"))
    SAMPLE_INTERVAL: float = float(os.environ.get("ZKBENCH_SAMPLE_INTERVAL", "0.25"))

    # Interval of the run-long sampler that feeds --resource-log.
    RESOURCE_LOG_INTERVAL: float = float(os.environ.get("ZKBENCH_RESOURCE_LOG_INTERVAL", "1.0"))

    # ---- Staged profiles --------------------------------------------
    PROFILE: str = os.environ.get("ZKBENCH_PROFILE", "light")
    PROFILES_FILE: Path = Path(
        os.environ.get("ZKBENCH_PROFILES_FILE", str(PACKAGE_DIR / "profiles.yml"))
    )
    # Pause at the end of every chain iteration so workers never spin.
    PACE_MS: int = int(os.environ.get("ZKBENCH_PACE_MS", "100"))

    # ---- Readiness and HTTP -----------------------------------------
    READY_ATTEMPTS: int = int(os.environ.get("ZKBENCH_READY_ATTEMPTS", "30"))
    READY_DELAY: float = float(os.environ.get("ZKBENCH_READY_DELAY", "1.0"))
    # Proof generation is CPU-bound on the server and can take seconds
    # under load, so the per-request timeout is generous.
    REQUEST_TIMEOUT: float = float(os.environ.get("ZKBENCH_REQUEST_TIMEOUT", "60"))


class LocalConfig(Config):
    """Developer-machine defaults; identical to ``Config``."""


class TestingConfig(Config):
    """
    Test-suite overrides.

    Points at a non-routable host so tests never hit a real service, and
    shrinks every duration so that anything that does run finishes fast.
    """

    BASE_URL: str = os.environ.get("TEST_ZKBENCH_BASE_URL", "http://zk-auth.test")
    CONCURRENCY_LEVELS: tuple[int, ...] = (1, 2)
    PHASE_DURATION: float = 0.2
    SAMPLE_INTERVAL: float = 0.05
    RESOURCE_LOG_INTERVAL: float = 0.05
    PACE_MS: int = 0
    READY_ATTEMPTS: int = 3
    READY_DELAY: float = 0.01
    REQUEST_TIMEOUT: float = 2.0


class CIConfig(Config):
    """
    CI overrides.

    Keeps the full endpoint set but trims the sweep so a pipeline run
    stays within a few minutes.
    """

    CONCURRENCY_LEVELS: tuple[int, ...] = parse_levels(
        os.environ.get("ZKBENCH_CONCURRENCY", "1,10")
    )
    PHASE_DURATION: float = float(os.environ.get("ZKBENCH_DURATION", "5"))


# Lookup table mapping environment name strings to their config classes.
config = {
    "local": LocalConfig,
    "testing": TestingConfig,
    "ci": CIConfig,
    "default": LocalConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"local"``, ``"testing"`` or ``"ci"``.  When *None*,
            the ``ZKBENCH_ENV`` environment variable is consulted, falling
            back to ``"local"`` if unset.

    Returns:
        The ``Config`` subclass matching the requested environment, or
        ``LocalConfig`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("ZKBENCH_ENV", "local")
    return config.get(env, config["default"])
