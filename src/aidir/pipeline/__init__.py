"""Per-person enrichment runs: lifecycle, inbound events and orchestration."""
