"""Host vitals monitoring with LLM-driven diagnostics on threshold breach."""
