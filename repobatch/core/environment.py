"""Heuristic detection of serverless/edge runtimes.

Feature probes are checked first (sandboxed runtimes, fetch-only runtimes) and
well-known provider environment variables act as a secondary signal. Batching
is only attempted in long-lived processes.
"""

import importlib.util
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

SERVERLESS_ENV_VARS: tuple[str, ...] = (
    "VERCEL",
    "AWS_LAMBDA_FUNCTION_NAME",
    "FUNCTIONS_WORKER_RUNTIME",
    "K_SERVICE",
    "GCP_PROJECT",
    "GCLOUD_PROJECT",
)


class EnvironmentProbe(Protocol):
    """Capability probes consulted by is_serverless."""

    def has_sandbox_runtime(self) -> bool: ...

    def has_fetch(self) -> bool: ...

    def has_process(self) -> bool: ...

    def environ(self) -> Mapping[str, str]: ...


class RuntimeProbe:
    """Probe the current CPython process."""

    def has_sandbox_runtime(self) -> bool:
        # Pyodide and other WebAssembly builds report emscripten/wasi
        return sys.platform in ("emscripten", "wasi")

    def has_fetch(self) -> bool:
        return importlib.util.find_spec("js") is not None

    def has_process(self) -> bool:
        return hasattr(os, "getpid") and hasattr(os, "environ")

    def environ(self) -> Mapping[str, str]:
        return os.environ


@dataclass
class StaticProbe:
    """Fixed probe results, used for tests and explicit overrides."""

    sandbox_runtime: bool = False
    fetch: bool = False
    process: bool = True
    env: Mapping[str, str] = field(default_factory=dict)

    def has_sandbox_runtime(self) -> bool:
        return self.sandbox_runtime

    def has_fetch(self) -> bool:
        return self.fetch

    def has_process(self) -> bool:
        return self.process

    def environ(self) -> Mapping[str, str]:
        return self.env


def is_serverless(probe: EnvironmentProbe | None = None) -> bool:
    """Classify the process as serverless/edge (True) or long-lived (False).

    Args:
        probe: Capability probes to consult (default: the running process)

    Returns:
        True if batching should not be attempted
    """
    probe = probe or RuntimeProbe()
    try:
        if probe.has_sandbox_runtime():
            return True

        # Edge workers expose fetch but no process/OS access
        if probe.has_fetch() and not probe.has_process():
            return True

        env = probe.environ()
        for name in SERVERLESS_ENV_VARS:
            if env.get(name):
                return True
    except Exception as e:
        # Detection is heuristic, assume long-lived
        logger.debug("Serverless environment detection error: %s", e)

    return False
