"""Structured fact extraction (career timeline, courses) via a text-generation backend."""
