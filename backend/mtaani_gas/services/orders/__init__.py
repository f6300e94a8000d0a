"""Order lifecycle: placement, dealer claims, status transitions and cancellation."""
