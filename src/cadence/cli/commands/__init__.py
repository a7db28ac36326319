# cadence/cli/commands: Command modules for the Cadence CLI.
#
# Each module in this package provides one or more CLI commands.

from .experiment import experiment_app
from .learning import anomalies, insights, prioritize, similar

__all__ = [
    # experiment.py
    "experiment_app",
    # learning.py
    "insights",
    "similar",
    "anomalies",
    "prioritize",
]
