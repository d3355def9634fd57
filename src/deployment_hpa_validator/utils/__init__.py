"""Utility modules for the admission webhook."""
