"""smsrental: one registry for SMS numbers leased from several providers.

Numbers are rented through provider APIs, scraped from public inbox pages or
registered by hand; their received messages are synced into a deduplicated
local store and served over a small HTTP API.
"""

__version__ = "0.1.0"
