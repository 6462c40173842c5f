"""
finmem - tiered memory engine for a Portuguese-language financial assistant.

This package contains:
- memory: working, episodic and long-term stores, curation and the engine facade
- knowledge: embeddings and vector similarity
- services: the text service used for refinement and summaries
- scheduler: background session sweep and episodic purge
- config: pydantic settings
- models: pydantic records and results
"""

__version__ = "0.1.0"
