"""
tools/__init__.py — ORION Tool Invocation
"""
