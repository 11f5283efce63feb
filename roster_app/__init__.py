"""Roster import application package."""
