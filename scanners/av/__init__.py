"""ClamAV-backed upload scanning service."""
