"""
Service infrastructure shared by the entry points under services/.

Components:
    container: build_services wiring and the MonitoringServices bundle
    logging: structlog configuration
    runner: ServiceRunner lifecycle base class
"""

from src.services.container import MonitoringServices, build_services
from src.services.logging import setup_logging
from src.services.runner import ServiceRunner

__all__ = [
    "MonitoringServices",
    "ServiceRunner",
    "build_services",
    "setup_logging",
]
