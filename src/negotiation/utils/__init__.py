"""Utility helpers for the negotiation package."""
