"""HTTP adapter over the payroll core."""
