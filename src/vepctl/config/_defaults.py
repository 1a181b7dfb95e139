"""Default pipeline configuration values.

This module defines the built-in values used for every key a pipeline
file leaves out.

Note: DEFAULT_CONFIG is a plain dict so it can be passed to deep_merge,
which copies it rather than mutating it.
"""

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {  # pyright: ignore[reportExplicitAny]
    "supervisor": {
        "grace_period": 2.0,
        "probe_timeout": 10.0,
        "probe_interval": 0.5,
        "connect_timeout": 0.5,
        "max_port_wait": 10,
        "port_wait_interval": 1.0,
        "monitor_interval": 1.0,
        "liveness_delay": 0.5,
        "container_engine": "auto",
        "container_prefix": "vep",
        "clean_stale": True,
    },
    "logging": {
        "level": "info",
        "format": "text",
        "file": "",
    },
    "variables": {},
    "services": [],
}

# Top-level tables VEPCTL_<TABLE>__<KEY> environment variables may override
ENV_OVERRIDE_SECTIONS: frozenset[str] = frozenset({"supervisor", "logging"})
