"""GED engine — configuration, errors, acting user, audit logging."""
