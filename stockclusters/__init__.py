"""
Stock Price Shape Clustering

A research tool for clustering index constituents by the shape of their
price histories, tracking how stable cluster membership is over time, and
comparing cluster performance against a benchmark index.
"""

__version__ = "0.1.0"
