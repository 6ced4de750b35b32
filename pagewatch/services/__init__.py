"""Check pipeline services: classification, change detection, quotas, logging and scheduling."""
