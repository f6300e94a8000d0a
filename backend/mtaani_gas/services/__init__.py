"""Business services for orders, dealers, payments and the cart."""
