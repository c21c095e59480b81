"""Services for the admission control application."""
