"""
agent/__init__.py — ORION Session Pipeline
"""
