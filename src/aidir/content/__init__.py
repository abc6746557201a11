"""Content normalization, hashing and relevance filtering."""
