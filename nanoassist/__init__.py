"""
Nanoassist Dashboard

Data layer of the Nanoassist call-center analytics dashboard: session and
profile resolution, chart aggregation, dashboard metrics and the call
recordings browser.
"""

__version__ = "1.0.0"
