"""Tick engine: signal bus, action arena, scheduler and collaborators."""
