"""Core domain: models, ports, errors, codecs and the target registry."""
