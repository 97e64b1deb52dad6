"""Multiplayer services: lobbies, game launch, progression and room fan-out."""
