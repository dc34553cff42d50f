"""Candidate extraction from article text."""
