"""Source adapters: one per external system, all returning RawCandidateItem."""
