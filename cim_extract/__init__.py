"""cim-extract: multi-provider financial data extraction from CIM documents."""

__version__ = "1.0.0"
