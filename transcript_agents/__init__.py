"""Multi-unit extraction pipeline for freight brokerage call transcripts."""

__version__ = "0.1.0"
