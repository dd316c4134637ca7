"""Customer, vendor and admin notifications."""
