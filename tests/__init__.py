"""
Test suite for the Hospital Scheduling Service.

Contains unit and integration tests for the application's functionality.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "1000")
