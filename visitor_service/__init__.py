"""
Visitor Service - Visitor Lifecycle and Operator Presence

A modular Python service for a visitor-management dashboard.
Derives visitor status (active/overdue/checked out) and operator presence
from Firebase snapshots and serves them over HTTP.
"""

__version__ = "1.0.0"
__author__ = "Visitor Service Team"
