"""
Input Tables
============

CSV loading and schema validation.
"""
