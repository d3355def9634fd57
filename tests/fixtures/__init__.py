"""Shared test data builders."""
