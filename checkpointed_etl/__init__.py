"""checkpointed-etl - resumable, checkpointed ETL pipeline execution."""

__version__ = "0.1.0"
