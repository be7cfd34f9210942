"""Alignment engines and the all-vs-all dispatcher."""
