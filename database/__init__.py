"""sqlite storage for the delivery history."""
