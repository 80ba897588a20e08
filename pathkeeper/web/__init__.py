"""HTTP API and realtime hubs."""
