"""roleguard: role-based access control decision engine."""

__version__ = "0.1.0"
