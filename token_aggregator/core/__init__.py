"""
Core module - configuration, logging, exceptions and service wiring.
"""
