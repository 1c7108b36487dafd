"""Core configuration, logging, errors and models for cim-extract."""
