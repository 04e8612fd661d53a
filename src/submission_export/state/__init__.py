"""
Persistent export state used by smart append.
"""

from .state_store import ExportState, ExportStateStore

__all__ = ['ExportState', 'ExportStateStore']
