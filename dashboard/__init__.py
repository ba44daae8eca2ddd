"""Core (UI-agnostic) dashboard logic.

This package contains:
- CSV / JSON ingestion (published Google Sheet, sales API, volume export)
- header normalization, field resolution and tolerant coercion
- the sales data store (reload lifecycle, last-load-wins)
- filter normalization
- page compute functions (JSON-serializable payloads)
- chart helpers (Altair -> Vega-Lite spec dict)
"""
