"""CTP configuration parsing and run lifecycle tracking."""
