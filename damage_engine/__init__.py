"""
Damage Engine: Uncertainty-aware reconciliation of earthquake damage data.

Reduces raw citizen reports and BSTS model summaries for the St. Himark
neighborhoods to one consistent (value, interval, certainty, severity) tuple
per neighborhood, category and time.
"""

__version__ = "1.0.0"
