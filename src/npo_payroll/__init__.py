"""Monthly payroll preparation engine for nonprofit organizations."""

__version__ = "0.1.0"
