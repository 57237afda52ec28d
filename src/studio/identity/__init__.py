"""Request identity resolution."""
