"""Clients for external collaborators."""

from tasko_service.clients.payment_gateway import PaymentGateway

__all__ = ["PaymentGateway"]
