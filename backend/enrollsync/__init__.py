"""
EnrollSync - local/remote database synchronization for school records.
"""

__version__ = "1.0.0"
