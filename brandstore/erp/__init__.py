"""Order export to the ERP (cXML over SOAP) and status reconciliation."""
