"""Custom figurine order service: pricing, upload sessions and the order lifecycle."""
