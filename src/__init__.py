"""
Rental Turnover Automation System.

Reads booking confirmation emails from rental platforms, detects new or
changed bookings and coordinates a cleaner for each checkout.
"""

__version__ = "1.0.0"
__author__ = "Rental Turnover Automation Team"
__description__ = "Booking intake and ranked cleaner coordination"
