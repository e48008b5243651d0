"""Services for due processing."""
