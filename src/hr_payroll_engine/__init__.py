"""HR payroll and benefit computation engine."""

__version__ = "1.0.0"
