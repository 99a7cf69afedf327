"""Compile Given/When/Then specs into runnable pytest suites."""

__version__ = "0.1.0"
