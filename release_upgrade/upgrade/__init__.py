"""Upgrade operations run by the pipeline steps."""
