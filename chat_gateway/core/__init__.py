"""
Core chat gateway modules.
"""
