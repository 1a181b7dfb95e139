"""vepctl: supervisor for the vehicle edge platform telemetry pipeline."""

__version__ = "0.1.0"
