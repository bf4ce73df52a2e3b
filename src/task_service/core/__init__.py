"""Authentication, rate limiting, services and webhook delivery."""
