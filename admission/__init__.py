"""Request admission control with distributed rate limiting."""
