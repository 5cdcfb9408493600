"""Database module for the PanelFlow billing service."""

from .db import Database

__all__ = ['Database']
