"""HTTP exporter for finished traces."""
