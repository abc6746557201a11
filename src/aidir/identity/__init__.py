"""Identity resolution against the local store and the knowledge base."""
