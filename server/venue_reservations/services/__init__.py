"""Business services for availability, holds, invoices and reconciliation."""
