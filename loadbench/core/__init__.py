"""Core engine: dataset, metrics, executors, orchestration and thresholds."""
