"""Live, reconciled view of coding sessions brokered by a relay."""

__version__ = "0.1.0"
