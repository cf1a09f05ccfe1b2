"""
Configuration and error types
"""
