# pharmacy_inventory/jobs/__init__.py

from .nightly_job import run_nightly_job

__all__ = ['run_nightly_job']
