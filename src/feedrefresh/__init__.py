"""Feed refresh scheduling and worker pipeline."""
