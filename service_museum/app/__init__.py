"""
Museum collection service package for the Museum Access Layer.

The service fronts the Met Collection API, routing every upstream call
through one mediation pipeline:
- Caching: in-memory TTL cache keyed by logical query
- Dispatch: FIFO admission with a concurrency ceiling and a per-window cap
- Retries: bounded backoff for 403 throttling and network failures

Structure:
- app.main: FastAPI app, routes, and component wiring.
- app.adapters: HTTP client for the collection API.
- app.caching: TTL cache store.
- app.dispatch: Dispatch scheduler.
- app.mediation: Retry controller and mediation facade.
- app.collection: Collection queries and composite fan-out.
"""
