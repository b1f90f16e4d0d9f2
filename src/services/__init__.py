"""Services package - business logic layer for lot traceability.

Architecture:
- Services: Stateless functions organized by component
- Transactions: Managed via session_scope(); every function also accepts
  a caller's ``session=`` to compose into a larger transaction
- Exceptions: TraceabilityError hierarchy in ``exceptions``
- Logging: Structured operation logs via ``logging_utils``

Service Modules:
- master_data_service: Read access to products, shelters, farmers, purchases
- batch_service: Batch registry (open, advance, close, processing logs)
- lot_service: Lot consolidator (weighted-average costing, allocation limits)
- inventory_ledger_service: Lot depletion with compare-and-set
- provenance_service: Lot -> batches -> purchases -> farmers resolution
- public_trace_service: Sanitized public verification view
"""
