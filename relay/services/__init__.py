"""Services that make up the request dispatch pipeline."""
