"""ChatMap: natural-language spatial search over OpenStreetMap services."""

__version__ = "1.0.0"
