"""tracksync: carrier shipment tracking reconciliation."""

__version__ = "1.0.0"
