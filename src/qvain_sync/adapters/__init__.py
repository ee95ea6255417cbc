"""Adapters connecting the synchronization engine to Metax and the database."""
