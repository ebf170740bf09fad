"""Philippine multi-tenant payroll computation core."""

__version__ = "0.1.0"
