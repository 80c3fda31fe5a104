"""Client wiring and the wallet event bus."""
