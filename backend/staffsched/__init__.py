"""Staff task scheduling engine."""
