"""
Hospital Scheduling Service

A FastAPI-based service for doctor availability, appointment booking and
the appointment lifecycle, with role-based access control.
"""

__version__ = "1.0.0"
