"""Job queue, workers, schedule and the analysis pipeline."""
