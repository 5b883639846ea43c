"""Number provider adapters: the shared contract, API and scrape variants."""
