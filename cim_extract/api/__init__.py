"""HTTP surface for cim-extract."""
