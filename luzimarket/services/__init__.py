"""Domain services for order settlement."""
