"""Moderation flag replication, lookup, and queue admission."""
