"""Medication adherence backend: schedules, dose ledger and reports."""

__version__ = "0.1.0"
