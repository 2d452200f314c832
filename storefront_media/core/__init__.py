"""Core configuration, logging, metrics, errors and storage backends."""
