"""Collector earnings and settlement engine."""

from collector_earnings.engine import EarningsEngine, EarningsResult
from collector_earnings.engine_config import EngineConfig
from collector_earnings.snapshot import EarningsSnapshot

__version__ = "0.1.0"

__all__ = ["EarningsEngine", "EarningsResult", "EarningsSnapshot", "EngineConfig"]
