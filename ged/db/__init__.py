"""GED persistence — declarative base, tables, pooled session handle."""
