"""Ports: inbound service contracts and outbound dependency contracts."""
