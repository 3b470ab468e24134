"""Brand store commerce actions: webhooks, tax and shipping decisions, ERP export."""

__version__ = "1.0.0"
