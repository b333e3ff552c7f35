"""
Utility modules for rental turnover automation.
"""

from .models import (
    Platform, EmailData, Booking, BookingRecord, CleanerContact, PropertyMetadata,
    PropertyConfig, EmailFilters, PropertiesConfiguration, WorkflowStatus,
    WorkflowExecution, CleaningAssignment, ProcessingResult, CallbackOutcome,
    CallbackResult, IntakeReport, ProcessingStats
)
from .logger import setup_logger, get_logger, IntakeLogger

__all__ = [
    'Platform', 'EmailData', 'Booking', 'BookingRecord', 'CleanerContact',
    'PropertyMetadata', 'PropertyConfig', 'EmailFilters', 'PropertiesConfiguration',
    'WorkflowStatus', 'WorkflowExecution', 'CleaningAssignment', 'ProcessingResult',
    'CallbackOutcome', 'CallbackResult', 'IntakeReport', 'ProcessingStats',
    'setup_logger', 'get_logger', 'IntakeLogger'
]
