"""Keeps Drafts consistent with the vault."""
