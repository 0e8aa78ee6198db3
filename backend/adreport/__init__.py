"""adreport: report data cache and metric aggregation engine for ad analytics."""

__version__ = "0.1.0"
