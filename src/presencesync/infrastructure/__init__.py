"""Infrastructure layer: concrete adapters for players, transports, providers and files."""
