"""External oracles: text embeddings and text generation.

Both are treated as black boxes by the pipelines and injected at construction.
"""
