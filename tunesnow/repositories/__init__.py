"""
Repository package for data access layers.

- `media`: upload batches and media objects (state lives here).
- `catalog`: artists, albums, tracks and genres.

Each module exposes a protocol class plus an async SQLAlchemy implementation
and an in-memory one for development and tests. The FastAPI wiring in
`tunesnow.dependencies.pipeline` picks the SQL implementations; tests swap
them through `app.dependency_overrides`.
"""
