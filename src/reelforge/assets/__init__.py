"""Asset store gateway: durable storage for provider-produced media."""
