"""Content provider gateway: contract, HTTP client, deterministic fake."""
