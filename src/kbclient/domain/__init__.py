"""Domain layer: session entities, expiry policy, ports and exceptions."""
