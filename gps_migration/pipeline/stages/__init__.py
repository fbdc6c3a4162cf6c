"""Migration stages

Each module exposes `run(ctx) -> list[MigrationResult]` and migrates one group
of entity families. Execution order and dependencies are declared in
`gps_migration.pipeline.orchestrator.STAGES`.
"""
