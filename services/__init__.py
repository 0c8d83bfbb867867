"""
Service entry points for the payment monitoring system.

Each subdirectory contains a standalone service.

Services:
    monitoring: Background scheduler running detection cycles
    dashboard: FastAPI monitoring API
"""
