"""Simulation drivers."""

from .base import SimulationDriver
from .clock import SimulatedClock
from .driver import LocalSimulationDriver, UpdateJob

__all__ = [
    "LocalSimulationDriver",
    "SimulatedClock",
    "SimulationDriver",
    "UpdateJob",
]
