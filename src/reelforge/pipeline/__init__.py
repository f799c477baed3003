"""Run state, stage executors, orchestrator and progress publishing."""
