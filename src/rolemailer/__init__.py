"""rolemailer - delayed, role-transition driven messaging."""

__version__ = "1.0.0"
