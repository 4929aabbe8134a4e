"""Business logic services: external clients, creators, orchestrator, analyzers."""
