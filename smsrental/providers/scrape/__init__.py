"""Scrape-based providers (no API; HTML fetched through relays)."""
