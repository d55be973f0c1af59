"""Chunked repository analysis: plan chunks, analyze each with the model, synthesize one report."""
