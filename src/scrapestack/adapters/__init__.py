"""Adapters implementing core ports and exposing them to the outside."""
