"""Notification matching and dispatch."""
