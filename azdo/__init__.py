"""
Azure DevOps command line interface.
"""

__version__ = "0.4.0"
__build_date__ = "2026-10-19"
