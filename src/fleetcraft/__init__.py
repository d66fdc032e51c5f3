"""fleetcraft: reconcile declared resources, then converge the hosts they describe."""

__version__ = "0.1.0"
