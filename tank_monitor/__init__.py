"""Tank telemetry sync and depletion-prediction engine."""

__version__ = "1.0.0"
