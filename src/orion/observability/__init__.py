"""
observability/ — ORION structured logging.
"""
