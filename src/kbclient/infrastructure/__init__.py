"""Infrastructure layer: storage, HTTP, observability and process wiring."""
