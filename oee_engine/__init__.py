"""
Production Effectiveness Engine

Aggregates production lots, stop events and quality issues into OEE
day-series, Pareto cause tables, downtime summaries and period comparisons.
"""

__version__ = "1.0.0"
