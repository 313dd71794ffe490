"""Core configuration, logging and environment detection."""
