"""
Student records.
"""
