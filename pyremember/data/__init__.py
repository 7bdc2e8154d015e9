"""
Data layer for pyremember.
"""
