"""
Room Timers

Real-time multi-room timer synchronization service.
"""

__version__ = "0.1.0"
