"""Migration pipeline package

Groups the legacy WordPress reader, the normalizers, the destination writers
and the staged orchestrator so `from gps_migration.pipeline.orchestrator import
run_stages` resolves the same way from the CLI and from the tests.
"""
