"""API module for the PanelFlow billing service."""

from .billing_api import create_app, BillingAPI

__all__ = ['create_app', 'BillingAPI']
