"""
notifications — Urgency-aware notification pipeline.

Sub-modules:
    channels/       — Push transports (logging, HTTP push gateway)
    pipeline        — Orchestration: fan-out → dedup → dispatch
    fanout          — Recipient resolution (explicit targets or geo radius)
    ledger          — Dedup window filter over the notification ledger
    dispatcher      — Persistence, ledger entries and push per recipient
    payloads        — Push payload building and parsing
    copy            — Event factories with calm, consistent wording
    stores          — Store protocols + in-memory backends
    sql_store       — PostgreSQL backends (SQLAlchemy)
    redis_geo       — Redis GEO geo index
    models          — Data structures shared across the pipeline
"""
