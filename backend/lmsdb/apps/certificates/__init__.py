"""Certificate numbering, issuance and lookup."""
