"""
config/ — ORION configuration.
"""
