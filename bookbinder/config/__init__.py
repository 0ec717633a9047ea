"""Bootstrap configuration read from the environment."""
