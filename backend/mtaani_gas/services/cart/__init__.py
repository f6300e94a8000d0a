"""Customer shopping cart."""
