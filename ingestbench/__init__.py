"""Synchronized MQTT telemetry load generator with ingestion cross-check."""
from __future__ import annotations

__version__ = "0.1.0"
