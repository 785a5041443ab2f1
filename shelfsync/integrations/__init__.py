"""
External system integrations
"""
