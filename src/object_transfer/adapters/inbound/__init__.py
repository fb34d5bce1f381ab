"""Inbound adapters: FastAPI signing facade."""
