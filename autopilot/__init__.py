"""
autopilot - condition-driven job automation daemon.
"""

__version__ = "0.4.0"
__logo__ = "✈"
