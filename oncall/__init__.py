"""Durable on-call alert escalation service."""
