"""
Configuration module for rental turnover automation.
"""

from .settings import (
    Settings, MailboxConfig, SmtpConfig, TwilioConfig, SupabaseConfig,
    StorageConfig, WorkflowConfig, AppConfig, load_settings
)

__all__ = [
    'Settings', 'MailboxConfig', 'SmtpConfig', 'TwilioConfig', 'SupabaseConfig',
    'StorageConfig', 'WorkflowConfig', 'AppConfig', 'load_settings'
]
