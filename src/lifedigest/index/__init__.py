"""Storage, ingestion and search over digested content."""
