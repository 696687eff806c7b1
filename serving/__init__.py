"""
Drift monitor serving module.

This module wires the drift monitor components into a single service and
exposes it over a FastAPI REST API.
"""

from serving.monitoring_service import MonitoringService

__all__ = ['MonitoringService']
