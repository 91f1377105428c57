"""
Test suite for the Medical Bill Scanner.

This package contains:
- Unit tests for locality resolution, rate lookup, comparison and summaries
- Orchestrator tests for full bill analysis
- Integration tests for the FastAPI endpoints
"""
