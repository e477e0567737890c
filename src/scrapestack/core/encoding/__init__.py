"""Encoders and decoders for scrape bodies and query responses."""
