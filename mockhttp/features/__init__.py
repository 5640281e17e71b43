"""
Handler units and transport features built on the core
"""
