"""HTTP service for the extraction pipeline."""
