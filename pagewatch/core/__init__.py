"""Core building blocks shared across the engine."""
